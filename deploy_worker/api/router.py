from fastapi import APIRouter, Request

from deploy_worker.api.v1 import services

router = APIRouter()

router.include_router(services.router, prefix="/api/v1")


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/ready")
async def ready():
    return {"status": "ok"}


@router.get("/worker/status")
async def worker_status(request: Request):
    worker = getattr(request.app.state, "worker", None)
    if worker is None:
        return {
            "running": False,
            "healthy": False,
            "status": "not_started",
        }

    try:
        return worker.status()
    except Exception as e:
        return {
            "running": False,
            "healthy": False,
            "error": str(e),
            "status": "error",
        }
