from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from deploy_worker.api.schemas.services import PodLogsResponse, ServiceStatusResponse
from deploy_worker.core.exceptions import ClusterApiError, DeployWorkerError, ServiceNotFound
from deploy_worker.dependencies import get_k8s_service
from deploy_worker.services.k8s_service import K8sService

router = APIRouter(prefix="/services", tags=["services"])


@router.get("/{service_id}/status", response_model=ServiceStatusResponse)
def get_service_status(
    service_id: int,
    k8s_service: K8sService = Depends(get_k8s_service),
):
    """État du deployment d'un service et de ses pods"""
    try:
        status = k8s_service.get_service_status(service_id)
    except ClusterApiError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except DeployWorkerError as e:
        raise HTTPException(status_code=500, detail=str(e))

    if status is None:
        raise HTTPException(status_code=404, detail=f"Service {service_id} not found or cluster not configured")
    return status


@router.get("/{service_id}/pods/{pod_name}/logs", response_model=PodLogsResponse)
def get_pod_logs(
    service_id: int,
    pod_name: str,
    container: Optional[str] = None,
    tail_lines: Optional[int] = None,
    previous: bool = False,
    k8s_service: K8sService = Depends(get_k8s_service),
):
    """Logs d'un pod du service"""
    try:
        logs = k8s_service.get_pod_logs(service_id, pod_name, container=container, tail_lines=tail_lines,
                                        previous=previous)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ServiceNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ClusterApiError as e:
        status_code = 404 if e.status == 404 else 502
        raise HTTPException(status_code=status_code, detail=str(e))

    return {"pod_name": pod_name, "logs": logs}
