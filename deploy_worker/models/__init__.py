from .base import BaseModel
from .cluster import Cluster
from .application import Application
from .registry_credential import RegistryCredential
from .env_binding import EnvBinding
from .service import Service
from .task import Task, TaskLogEntry, TaskStatus

__all__ = ["BaseModel", "Cluster", "Application", "RegistryCredential", "EnvBinding", "Service", "Task",
           "TaskLogEntry", "TaskStatus"]
