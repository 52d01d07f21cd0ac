# deploy_worker/services/task_state.py
import asyncio
import logging
import traceback
from datetime import datetime
from typing import Optional

from deploy_worker.core.exceptions import InvalidTaskTransition
from deploy_worker.models.task import Task, TaskStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    TaskStatus.WAITING: {TaskStatus.EXECUTING},
    TaskStatus.EXECUTING: {TaskStatus.DONE, TaskStatus.FAILED},
}

TERMINAL_STATUSES = {TaskStatus.DONE, TaskStatus.FAILED}


class TaskStateMachine:
    @staticmethod
    def can_transition(current: TaskStatus, new_status: TaskStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS.get(current, set())

    @staticmethod
    def transition(task: Task, new_status: TaskStatus, *, now: Optional[datetime] = None) -> Task:
        now = now or datetime.utcnow()
        current = TaskStatus(task.status)

        if not TaskStateMachine.can_transition(current, new_status):
            raise InvalidTaskTransition(f"Cannot transition task {task.id} from {current.value} to {new_status.value}")

        if new_status == TaskStatus.EXECUTING:
            task.started_at = now
        elif new_status in TERMINAL_STATUSES:
            task.finished_at = now

        task.status = new_status
        return task


class TaskJournal:
    """
    Journal d'une tâche pendant sa réconciliation.

    Chaque ligne est ajoutée au log de la tâche en base (append-only),
    les appels bloquants au store sont exécutés hors de la boucle asyncio.
    """

    def __init__(self, task_repository, task_id: int):
        self.task_repository = task_repository
        self.task_id = task_id

    async def start(self) -> bool:
        """WAITING -> EXECUTING. False si la tâche a déjà été réclamée ailleurs."""
        return await asyncio.to_thread(self.task_repository.claim, self.task_id)

    async def log(self, message: str) -> None:
        await asyncio.to_thread(self.task_repository.append_log, self.task_id, message)

    async def warn(self, message: str) -> None:
        logger.warning(f"Task {self.task_id}: {message}")
        await self.log(f"✗ Warning: {message}")

    async def complete(self, message: str) -> None:
        await asyncio.to_thread(self.task_repository.finish, self.task_id, TaskStatus.DONE, message)

    async def fail(self, error: BaseException) -> None:
        """Trace puis message d'erreur en dernière ligne, statut FAILED"""
        trace = "".join(traceback.format_exception(type(error), error, error.__traceback__, limit=8))
        await self.log(f"Stack trace: {trace.strip()}")
        await asyncio.to_thread(
            self.task_repository.finish,
            self.task_id,
            TaskStatus.FAILED,
            f"✗ Deployment failed: {type(error).__name__}: {error}",
        )
