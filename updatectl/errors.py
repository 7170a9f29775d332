"""Exception types raised by the update orchestrator."""
from typing import Optional


class UpdateError(Exception):
    """Base class for all updatectl errors."""


class PreconditionError(UpdateError):
    """A command was rejected before any state was touched."""


class OperationInProgressError(PreconditionError):
    """Another check or rollout is already running."""

    def __init__(self, message: str = "An update operation is already in progress"):
        super().__init__(message)


class MissingTargetVersionError(PreconditionError):
    """A runtime upgrade was requested without a target version."""

    def __init__(self, message: str = "Target version is required"):
        super().__init__(message)


class NoNodesError(PreconditionError):
    """The cluster reported no nodes to roll out to."""

    def __init__(self, message: str = "Cluster reported no nodes"):
        super().__init__(message)


class RemoteExecutionError(UpdateError):
    """A command on a node exited non-zero or timed out."""

    def __init__(self, message: str, exit_code: Optional[int] = None, output: str = ""):
        self.exit_code = exit_code
        self.output = output
        if output:
            message = f"{message}\n{output}"
        super().__init__(message)


class NodeNotReadyError(UpdateError):
    """A node did not reach the expected condition before its deadline."""
