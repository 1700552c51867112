from fastapi import APIRouter, Request

from app.schemas.delivery import HealthOut

router = APIRouter()


@router.get("/health", response_model=HealthOut)
async def health(request: Request) -> HealthOut:
    runtime = getattr(request.app.state, "runtime", None)
    active = len(runtime.reconciler.active_pollers) if runtime else 0
    return HealthOut(status="ok", active_pollers=active)
