import enum
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Enum, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from deploy_worker.core.database import Base
from deploy_worker.models.base import BaseModel


class TaskStatus(str, enum.Enum):
    WAITING = "WAITING"
    EXECUTING = "EXECUTING"
    FAILED = "FAILED"
    DONE = "DONE"


class Task(BaseModel):
    __tablename__ = "tasks"

    service_id = Column(Integer, ForeignKey("services.id"), nullable=False, index=True)
    payload = Column(JSON, nullable=False)

    status = Column(Enum(TaskStatus), default=TaskStatus.WAITING, nullable=False, index=True)
    started_at = Column(DateTime)
    finished_at = Column(DateTime)

    # Log append-only, une ligne par entrée
    log_entries = relationship("TaskLogEntry", order_by="TaskLogEntry.id", cascade="all, delete-orphan",
                               back_populates="task")

    @property
    def log(self):
        return [entry.message for entry in self.log_entries]

    def __repr__(self):
        return f"<Task(id={self.id}, service_id={self.service_id}, status='{self.status}')>"


class TaskLogEntry(Base):
    __tablename__ = "task_log_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    logged_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    task = relationship("Task", back_populates="log_entries")
