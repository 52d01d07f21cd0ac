import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from deploy_worker.api.router import router
from deploy_worker.config import settings
from deploy_worker.core.database import get_db_manager
from deploy_worker.core.logging import setup_logging
from deploy_worker.dependencies import get_cipher, get_dispatcher_worker

setup_logging(level=settings.LOG_LEVEL, log_file=settings.LOG_FILE)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Démarrage du deploy worker...")

    # Master key invalide: le process ne démarre pas
    get_cipher()

    if settings.DB_CREATE_TABLES:
        get_db_manager().create_tables()
        logger.info("✅ Tables créées")

    worker = get_dispatcher_worker()
    worker_task = asyncio.create_task(worker.start())
    worker._task = worker_task
    app.state.worker = worker
    app.state.worker_task = worker_task
    logger.info("✅ Dispatcher démarré en arrière-plan")

    yield

    logger.info("🔄 Arrêt du deploy worker...")
    try:
        worker.stop()
        worker_task.cancel()
        try:
            await asyncio.wait_for(worker_task, timeout=10.0)
            logger.info("✅ Worker arrêté proprement")
        except (asyncio.CancelledError, asyncio.TimeoutError):
            logger.warning("⚠️ Worker forcé à s'arrêter (timeout ou annulation)")
    except Exception as e:
        logger.error(f"❌ Erreur lors de l'arrêt du worker: {e}")

    logger.info("✅ Deploy worker arrêté proprement")


app = FastAPI(
    title="Deploy Worker",
    description="Réconciliation des déploiements de services vers Kubernetes",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)


def run():
    uvicorn.run("deploy_worker.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)


if __name__ == "__main__":
    run()
