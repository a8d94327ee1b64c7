"""
Scheduler endpoints for external-cron wiring.
"""

from typing import Any

from fastapi import APIRouter

from frontdesk.dependencies import RuntimeDep
from frontdesk.shared.exceptions import ValidationError

router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])


@router.post("/sweep")
async def run_sweep(runtime: RuntimeDep, kind: str | None = None) -> dict[str, Any]:
    """Run one sweep over due operations (of `kind`, or every kind)."""
    if kind is not None and kind not in runtime.registry:
        raise ValidationError(f"No handler registered for kind {kind!r}")
    report = await runtime.sweeper.sweep(kind)
    return report.to_dict()


@router.post("/wakes/fire")
async def fire_due_wakes(runtime: RuntimeDep) -> dict[str, int]:
    """Fire every scheduled wait that is due."""
    return {"fired": await runtime.waker.fire_due()}


@router.post("/housekeeping")
async def run_housekeeping(runtime: RuntimeDep) -> dict[str, int]:
    report = await runtime.housekeeper.run()
    return report.to_dict()
