"""
Rolling update modules.
"""
from .models import NodeInfo, NodeRole, OperationKind, OperationState, OperationStatus
from .orchestrator import UpdateOrchestrator, get_orchestrator, set_orchestrator
from .ordering import order_nodes
from .ssh import RemoteExecutor
from .store import StateStore

__all__ = [
    'NodeInfo',
    'NodeRole',
    'OperationKind',
    'OperationState',
    'OperationStatus',
    'UpdateOrchestrator',
    'get_orchestrator',
    'set_orchestrator',
    'order_nodes',
    'RemoteExecutor',
    'StateStore',
]
