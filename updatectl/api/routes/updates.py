from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from updatectl.errors import OperationInProgressError, PreconditionError
from updatectl.modules.models import OperationKind
from updatectl.modules.orchestrator import UpdateOrchestrator, get_orchestrator

router = APIRouter(prefix="/updates")


class RuntimeUpgradeRequest(BaseModel):
    version: Optional[str] = None


def _rejected(e: PreconditionError) -> HTTPException:
    status_code = 409 if isinstance(e, OperationInProgressError) else 400
    return HTTPException(status_code=status_code, detail=str(e))


@router.get("/status")
def update_status(orchestrator: UpdateOrchestrator = Depends(get_orchestrator)):
    """Full state for UI polling."""
    return orchestrator.status()


@router.post("/check")
def check_updates(orchestrator: UpdateOrchestrator = Depends(get_orchestrator)):
    """Check OS packages and runtime versions on every node."""
    try:
        return orchestrator.check().to_dict()
    except PreconditionError as e:
        raise _rejected(e)


@router.post("/start/os")
def start_os_update(orchestrator: UpdateOrchestrator = Depends(get_orchestrator)):
    try:
        orchestrator.start(OperationKind.OS_UPDATE)
    except PreconditionError as e:
        raise _rejected(e)
    return {"ok": True, "message": "OS update started"}


@router.post("/start/runtime")
def start_runtime_upgrade(
    req: RuntimeUpgradeRequest,
    orchestrator: UpdateOrchestrator = Depends(get_orchestrator),
):
    try:
        orchestrator.start(OperationKind.RUNTIME_UPGRADE, req.version)
    except PreconditionError as e:
        raise _rejected(e)
    return {"ok": True, "message": f"Runtime upgrade to {req.version} started"}


@router.post("/reset")
def reset_updates(orchestrator: UpdateOrchestrator = Depends(get_orchestrator)):
    """Clear state back to idle."""
    try:
        orchestrator.reset()
    except PreconditionError as e:
        raise _rejected(e)
    return {"ok": True}
