from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class PodResponse(BaseModel):
    name: str
    namespace: str
    status: str
    phase: str
    ready: bool
    restarts: int
    age: str
    node: Optional[str] = None
    image: Optional[str] = None
    created_at: Optional[datetime] = None


class ServiceStatusResponse(BaseModel):
    service_name: str
    namespace: str
    deployment_name: str
    desired_replicas: int
    ready_replicas: int
    available_replicas: int
    pods: List[PodResponse]


class PodLogsResponse(BaseModel):
    pod_name: str
    logs: str
