"""Durable JSON snapshot of the orchestrator state."""
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from .models import DEFAULT_MAX_LOGS, OperationState, OperationStatus

logger = logging.getLogger("updatectl.store")
rollout_logger = logging.getLogger("updatectl.rollout")

RESTART_MESSAGE = "Process restarted during operation"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class StateStore:
    """Loads and saves :class:`OperationState` as a single JSON document.

    The whole state is rewritten on every save. Writes go to a temporary file
    in the same directory which is then moved over the target, so a reader
    never sees a half written document.
    """

    def __init__(self, path: Union[str, Path], max_logs: int = DEFAULT_MAX_LOGS):
        self.path = Path(path).expanduser()
        self.max_logs = max_logs

    def load(self, recover: bool = True) -> OperationState:
        """Return the persisted state, or a fresh one if none can be read.

        With ``recover``, a snapshot left in ``updating`` or ``checking`` means
        the process died mid-operation; it is reclassified as ``error``, saved
        and never resumed. Read-only callers pass ``recover=False`` and get the
        document as written, without touching the file.
        """
        if not self.path.exists():
            return OperationState.fresh(self.max_logs)

        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            state = OperationState.from_dict(data, self.max_logs)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to load update state from {self.path}: {e}")
            return OperationState.fresh(self.max_logs)

        if recover and state.status in (OperationStatus.UPDATING, OperationStatus.CHECKING):
            logger.warning(
                f"Update state was '{state.status.value}' when the process stopped; marking as error"
            )
            state.status = OperationStatus.ERROR
            state.error = RESTART_MESSAGE
            state.add_log(RESTART_MESSAGE, level="error")
            self.save(state)

        logger.debug(f"Loaded update state from {self.path}")
        return state

    def save(self, state: OperationState) -> bool:
        """Persist ``state``. Failures are logged, never raised."""
        try:
            payload = json.dumps(state.to_dict(), indent=2)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(payload)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to save update state to {self.path}: {e}")
            return False


class StateHolder:
    """Owns the live :class:`OperationState` and its lock.

    All writes go through :meth:`mutate`, which holds the lock for the
    duration of the change and persists the result. Readers use
    :meth:`snapshot` and get an independent copy.
    """

    def __init__(self, store: StateStore, state: Optional[OperationState] = None):
        self.store = store
        self.state = state if state is not None else store.load()
        self._lock = threading.RLock()

    @contextmanager
    def mutate(self) -> Iterator[OperationState]:
        with self._lock:
            try:
                yield self.state
            finally:
                self.store.save(self.state)

    def replace(self, state: OperationState) -> None:
        with self._lock:
            self.state = state
            self.store.save(self.state)

    @property
    def status(self) -> OperationStatus:
        with self._lock:
            return self.state.status

    def snapshot(self) -> OperationState:
        with self._lock:
            return OperationState.from_dict(self.state.to_dict(), self.store.max_logs)

    def log(self, message: str, level: str = "info", node: Optional[str] = None) -> None:
        """Append to the state's log buffer and mirror it to the Python logger."""
        with self.mutate() as state:
            state.add_log(message, level=level, node=node)
        prefix = f"[{node}] " if node else ""
        rollout_logger.log(LOG_LEVELS.get(level, logging.INFO), f"{prefix}{message}")
