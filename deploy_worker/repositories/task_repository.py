# deploy_worker/repositories/task_repository.py
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload, sessionmaker

from deploy_worker.models.task import Task, TaskLogEntry, TaskStatus
from deploy_worker.repositories.base_repository import BaseRepository
from deploy_worker.services.task_payload import DeployPayload
from deploy_worker.services.task_state import TaskStateMachine

logger = logging.getLogger(__name__)


class TaskRepository(BaseRepository[Task]):
    """Store des tâches de déploiement: file d'attente, statut et log"""

    def __init__(self, session_factory: sessionmaker):
        super().__init__(Task, session_factory)

    def enqueue_deploy(self, service_id: int, image: str, deploy_id: Optional[str] = None) -> Task:
        """Crée une tâche WAITING 'deploy image X' pour un service"""
        payload = DeployPayload(image=image, deploy_id=deploy_id)
        return self.create({
            "service_id": service_id,
            "payload": payload.to_dict(),
            "status": TaskStatus.WAITING,
        })

    def get_with_log(self, task_id: int) -> Optional[Task]:
        with self._session() as db:
            return (db.query(Task)
                    .options(selectinload(Task.log_entries))
                    .filter(Task.id == task_id)
                    .first())

    def get_log(self, task_id: int) -> List[str]:
        with self._session() as db:
            rows = (db.query(TaskLogEntry.message)
                    .filter(TaskLogEntry.task_id == task_id)
                    .order_by(TaskLogEntry.id)
                    .all())
            return [row.message for row in rows]

    def get_oldest_waiting(self) -> Optional[Task]:
        """Tâche WAITING la plus ancienne (ordre de création)"""
        with self._session() as db:
            return (db.query(Task)
                    .filter(Task.status == TaskStatus.WAITING)
                    .order_by(Task.created_at.asc(), Task.id.asc())
                    .first())

    def list_by_status(self, status: TaskStatus) -> List[Task]:
        with self._session() as db:
            return (db.query(Task)
                    .filter(Task.status == status)
                    .order_by(Task.created_at.asc(), Task.id.asc())
                    .all())

    def claim(self, task_id: int, now: Optional[datetime] = None) -> bool:
        """
        Passe la tâche en EXECUTING si, et seulement si, elle est encore WAITING.

        Update conditionnel (compare-and-swap sur le statut): deux workers qui
        lisent la même tâche ne peuvent pas la réclamer tous les deux.
        """
        now = now or datetime.utcnow()
        with self._session() as db:
            try:
                result = db.execute(
                    update(Task)
                    .where(Task.id == task_id, Task.status == TaskStatus.WAITING)
                    .values(status=TaskStatus.EXECUTING, started_at=now, updated_at=now)
                )
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise
        claimed = result.rowcount == 1
        if not claimed:
            logger.warning(f"Task {task_id} is no longer WAITING, claim skipped")
        return claimed

    def append_log(self, task_id: int, message: str) -> None:
        with self._session() as db:
            try:
                db.add(TaskLogEntry(task_id=task_id, message=message))
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise

    def finish(self, task_id: int, status: TaskStatus, message: Optional[str] = None,
               now: Optional[datetime] = None) -> Task:
        """Transition vers un état terminal, avec une dernière ligne de log optionnelle"""
        with self._session() as db:
            try:
                task = db.query(Task).filter(Task.id == task_id).with_for_update().one()
                TaskStateMachine.transition(task, status, now=now)
                if message is not None:
                    db.add(TaskLogEntry(task_id=task_id, message=message))
                db.commit()
                return task
            except SQLAlchemyError:
                db.rollback()
                raise

    def fail_stale(self, message: str) -> List[int]:
        """Passe en FAILED toutes les tâches restées EXECUTING (ex: crash du worker)"""
        failed = []
        for task in self.list_by_status(TaskStatus.EXECUTING):
            self.finish(task.id, TaskStatus.FAILED, message)
            failed.append(task.id)
        return failed
