"""Data models for rolling update state."""
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

DEFAULT_MAX_LOGS = 500


def utcnow() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


class OperationStatus(str, Enum):
    """Top level orchestrator status."""
    IDLE = 'idle'
    CHECKING = 'checking'
    UPDATING = 'updating'
    COMPLETE = 'complete'
    ERROR = 'error'


class OperationKind(str, Enum):
    """Which rollout is active or last ran."""
    NONE = 'none'
    OS_UPDATE = 'os-update'
    RUNTIME_UPGRADE = 'runtime-upgrade'


class NodeStatus(str, Enum):
    PENDING = 'pending'
    IN_PROGRESS = 'in-progress'
    COMPLETE = 'complete'
    ERROR = 'error'
    SKIPPED = 'skipped'


class StepStatus(str, Enum):
    PENDING = 'pending'
    IN_PROGRESS = 'in-progress'
    COMPLETE = 'complete'
    ERROR = 'error'


class NodeRole(str, Enum):
    """Node roles in the cluster."""
    CONTROL_PLANE = 'control-plane'
    WORKER = 'worker'


@dataclass
class NodeInfo:
    """A cluster node as reported by the control plane."""
    name: str
    role: NodeRole
    address: Optional[str] = None
    runtime_version: Optional[str] = None
    architecture: Optional[str] = None


@dataclass
class StepProgress:
    name: str
    status: StepStatus = StepStatus.PENDING
    output: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'status': self.status.value, 'output': self.output}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StepProgress':
        return cls(
            name=data['name'],
            status=StepStatus(data.get('status', StepStatus.PENDING.value)),
            output=data.get('output') or '',
        )


@dataclass
class NodeProgress:
    """Progress of a single node through its step list."""
    role: NodeRole
    steps: List[StepProgress]
    status: NodeStatus = NodeStatus.PENDING
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'role': self.role.value,
            'steps': [s.to_dict() for s in self.steps],
            'error': self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NodeProgress':
        return cls(
            role=NodeRole(data['role']),
            steps=[StepProgress.from_dict(s) for s in data.get('steps', [])],
            status=NodeStatus(data.get('status', NodeStatus.PENDING.value)),
            error=data.get('error'),
        )


@dataclass
class LogEntry:
    message: str
    level: str = 'info'
    node: Optional[str] = None
    timestamp: str = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'node': self.node,
            'message': self.message,
            'level': self.level,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LogEntry':
        return cls(
            message=data.get('message', ''),
            level=data.get('level', 'info'),
            node=data.get('node'),
            timestamp=data.get('timestamp') or utcnow(),
        )


@dataclass
class OsCheckResult:
    """Upgradable packages found on one node; ``upgradable == -1`` marks a failed check."""
    upgradable: int
    packages: List[str] = field(default_factory=list)
    last_checked: str = field(default_factory=utcnow)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'upgradable': self.upgradable,
            'packages': list(self.packages),
            'last_checked': self.last_checked,
        }
        if self.error is not None:
            data['error'] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OsCheckResult':
        return cls(
            upgradable=data.get('upgradable', -1),
            packages=list(data.get('packages', [])),
            last_checked=data.get('last_checked') or utcnow(),
            error=data.get('error'),
        )


@dataclass
class RuntimeVersions:
    current: Optional[str] = None
    latest: Optional[str] = None
    per_node: Dict[str, Optional[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {'current': self.current, 'latest': self.latest, 'per_node': dict(self.per_node)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RuntimeVersions':
        return cls(
            current=data.get('current'),
            latest=data.get('latest'),
            per_node=dict(data.get('per_node', {})),
        )


@dataclass
class Versions:
    """Results of the last version check; kept across rollouts and resets."""
    os: Dict[str, OsCheckResult] = field(default_factory=dict)
    runtime: RuntimeVersions = field(default_factory=RuntimeVersions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'os': {name: r.to_dict() for name, r in self.os.items()},
            'runtime': self.runtime.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Versions':
        return cls(
            os={name: OsCheckResult.from_dict(r) for name, r in data.get('os', {}).items()},
            runtime=RuntimeVersions.from_dict(data.get('runtime', {})),
        )


@dataclass
class OperationState:
    """Everything the orchestrator knows about the current and last rollout."""
    status: OperationStatus = OperationStatus.IDLE
    operation: OperationKind = OperationKind.NONE
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None
    target_version: Optional[str] = None
    node_order: List[str] = field(default_factory=list)
    current_node_index: int = -1
    nodes: Dict[str, NodeProgress] = field(default_factory=dict)
    versions: Versions = field(default_factory=Versions)
    logs: Deque[LogEntry] = field(default_factory=lambda: deque(maxlen=DEFAULT_MAX_LOGS))

    @classmethod
    def fresh(cls, max_logs: int = DEFAULT_MAX_LOGS,
              versions: Optional[Versions] = None) -> 'OperationState':
        return cls(versions=versions or Versions(), logs=deque(maxlen=max_logs))

    def add_log(self, message: str, level: str = 'info', node: Optional[str] = None) -> LogEntry:
        entry = LogEntry(message=message, level=level, node=node)
        self.logs.append(entry)
        return entry

    def clear_logs(self) -> None:
        self.logs = deque(maxlen=self.logs.maxlen)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'operation': self.operation.value,
            'started_at': self.started_at,
            'completed_at': self.completed_at,
            'error': self.error,
            'target_version': self.target_version,
            'node_order': list(self.node_order),
            'current_node_index': self.current_node_index,
            'nodes': {name: n.to_dict() for name, n in self.nodes.items()},
            'versions': self.versions.to_dict(),
            'logs': [entry.to_dict() for entry in self.logs],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], max_logs: int = DEFAULT_MAX_LOGS) -> 'OperationState':
        logs: Deque[LogEntry] = deque(maxlen=max_logs)
        logs.extend(LogEntry.from_dict(e) for e in data.get('logs', []))
        return cls(
            status=OperationStatus(data.get('status', OperationStatus.IDLE.value)),
            operation=OperationKind(data.get('operation') or OperationKind.NONE.value),
            started_at=data.get('started_at'),
            completed_at=data.get('completed_at'),
            error=data.get('error'),
            target_version=data.get('target_version'),
            node_order=list(data.get('node_order', [])),
            current_node_index=data.get('current_node_index', -1),
            nodes={name: NodeProgress.from_dict(n) for name, n in data.get('nodes', {}).items()},
            versions=Versions.from_dict(data.get('versions', {})),
            logs=logs,
        )
