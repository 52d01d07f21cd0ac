import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from deploy_worker.core.exceptions import InvalidTaskTransition
from deploy_worker.models.task import Task, TaskStatus

logger = logging.getLogger(__name__)

STALE_TASK_MESSAGE = "✗ Deployment failed: interrupted by worker restart"


class DispatcherWorker:
    """
    Boucle de polling: prend la tâche WAITING la plus ancienne et la réconcilie
    jusqu'au bout avant de passer à la suivante. Une seule réconciliation à la
    fois par process.
    """

    def __init__(
        self,
        task_repository,
        reconciliation_service,
        poll_interval: float = 1.0,
        reconcile_timeout: float = 600.0,
        recover_stale: bool = False,
    ):
        self.task_repository = task_repository
        self.reconciliation_service = reconciliation_service
        self.poll_interval = poll_interval
        self.reconcile_timeout = reconcile_timeout
        self.recover_stale = recover_stale

        self.running = False
        self._task: Optional[asyncio.Task] = None

        # Statistiques exposées sur /worker/status
        self.processed_count = 0
        self.failed_count = 0
        self.last_task_id: Optional[int] = None
        self.last_error: Optional[str] = None
        self.last_tick_at: Optional[datetime] = None

    async def start(self):
        """Démarre la boucle de dispatch"""
        if self.running:
            return

        self.running = True
        logger.info("🔄 Dispatcher worker started")

        if self.recover_stale:
            await self.recover_stale_tasks()

        while self.running:
            try:
                await self.tick()
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                logger.info("🔄 Dispatcher worker cancelled")
                break
            except Exception as e:
                # Erreur du store pendant le polling: on réessaie au prochain tour
                logger.exception(f"❌ Error in dispatcher loop: {e}")
                self.last_error = str(e)
                if self.running:
                    await asyncio.sleep(self.poll_interval)

        self.running = False
        logger.info("⏹️ Dispatcher worker stopped")

    def stop(self):
        """Arrête le worker après la réconciliation en cours"""
        self.running = False

    def is_healthy(self) -> bool:
        return self.running and self._task is not None and not self._task.done()

    async def tick(self) -> Optional[int]:
        """Traite au plus une tâche; retourne son id"""
        self.last_tick_at = datetime.utcnow()

        task = await asyncio.to_thread(self.task_repository.get_oldest_waiting)
        if task is None:
            return None

        logger.info(f"📦 Processing task {task.id} (service {task.service_id})")
        self.last_task_id = task.id

        try:
            await self._run_with_watchdog(task)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed_count += 1
            self.last_error = f"{type(e).__name__}: {e}"
            logger.exception(f"❌ Task {task.id} failed: {e}")
        finally:
            self.processed_count += 1

        return task.id

    async def _run_with_watchdog(self, task: Task) -> None:
        # Le délai ne court qu'une fois la tâche EXECUTING
        if not await self.reconciliation_service.claim(task):
            return

        if not self.reconcile_timeout or self.reconcile_timeout <= 0:
            await self.reconciliation_service.reconcile(task)
            return

        try:
            await asyncio.wait_for(self.reconciliation_service.reconcile(task), timeout=self.reconcile_timeout)
        except asyncio.TimeoutError:
            message = f"✗ Deployment failed: reconciliation timed out after {self.reconcile_timeout:g}s"
            logger.error(f"⏱️ Task {task.id} timed out after {self.reconcile_timeout:g}s")
            try:
                await asyncio.to_thread(self.task_repository.finish, task.id, TaskStatus.FAILED, message)
            except InvalidTaskTransition as e:
                logger.warning(f"⚠️ Task {task.id} already finished: {e}")
            raise

    async def recover_stale_tasks(self):
        """Tâches restées EXECUTING après un crash: passées en FAILED"""
        failed = await asyncio.to_thread(self.task_repository.fail_stale, STALE_TASK_MESSAGE)
        if failed:
            logger.warning(f"⚠️ Marked {len(failed)} stale task(s) as FAILED: {failed}")
        return failed

    def status(self) -> Dict[str, Any]:
        has_task = self._task is not None
        task_done = self._task.done() if has_task else True
        healthy = self.is_healthy()
        return {
            "running": self.running,
            "healthy": healthy,
            "task_exists": has_task,
            "task_done": task_done,
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "last_task_id": self.last_task_id,
            "last_error": self.last_error,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "status": "healthy" if healthy else "unhealthy",
        }
