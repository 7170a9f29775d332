"""Node ordering policy for rollouts."""
from typing import Iterable, List

from .models import NodeInfo, NodeRole, OperationKind

# Lower rank goes first.
ROLE_RANK = {
    # Workers first, control plane last.
    OperationKind.OS_UPDATE: {NodeRole.WORKER: 0, NodeRole.CONTROL_PLANE: 1},
    # Server before any agent.
    OperationKind.RUNTIME_UPGRADE: {NodeRole.CONTROL_PLANE: 0, NodeRole.WORKER: 1},
}


def sort_nodes(nodes: Iterable[NodeInfo], kind: OperationKind) -> List[NodeInfo]:
    """Return ``nodes`` in the order ``kind`` processes them."""
    try:
        rank = ROLE_RANK[kind]
    except KeyError:
        raise ValueError(f"No node ordering defined for operation '{kind.value}'")
    return sorted(nodes, key=lambda n: (rank[n.role], n.name))


def order_nodes(nodes: Iterable[NodeInfo], kind: OperationKind) -> List[str]:
    """Return node names in rollout order for ``kind``.

    Ties within a role resolve by ascending name, so the result only depends
    on the set of nodes passed in.
    """
    return [n.name for n in sort_nodes(nodes, kind)]
