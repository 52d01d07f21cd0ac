from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from deploy_worker.core.exceptions import ClusterApiError, ServiceNotFound
from deploy_worker.core.naming import sanitize
from deploy_worker.external.k8s_client import ClusterClientFactory, call_api_sync, read_or_none_sync

logger = logging.getLogger(__name__)


class K8sService:
    """Lecture de l'état courant d'un service sur son cluster (pods, replicas, logs)"""

    def __init__(self, service_repository, cluster_factory: ClusterClientFactory):
        self.service_repository = service_repository
        self.cluster_factory = cluster_factory

    def get_service_status(self, service_id: int) -> Optional[Dict[str, Any]]:
        """
        Snapshot du deployment d'un service et de ses pods.

        Retourne None si le service n'existe pas ou n'a pas de cluster.
        Un deployment absent (jamais déployé) donne un snapshot à zéro.
        """
        service = self.service_repository.get_for_deployment(service_id)
        if service is None or service.application.cluster is None:
            return None

        namespace = sanitize(service.application.namespace)
        deployment_name = sanitize(service.name)

        status = {
            "service_name": service.name,
            "namespace": namespace,
            "deployment_name": deployment_name,
            "desired_replicas": service.replicas,
            "ready_replicas": 0,
            "available_replicas": 0,
            "pods": [],
        }

        with self.cluster_factory.resolve(service.application.cluster.id) as apis:
            deployment = read_or_none_sync(
                f"read deployment {deployment_name}",
                apis.apps_api.read_namespaced_deployment,
                name=deployment_name,
                namespace=namespace,
            )
            if deployment is None:
                logger.info(f"Deployment {deployment_name} not found in {namespace}")
                return status

            pods = call_api_sync(
                f"list pods in {namespace}",
                apis.core_api.list_namespaced_pod,
                namespace=namespace,
                label_selector=f"app={deployment_name}",
            )

        spec = deployment.spec
        deployment_status = deployment.status
        status["desired_replicas"] = (spec.replicas if spec and spec.replicas is not None else 0)
        status["ready_replicas"] = (deployment_status.ready_replicas or 0) if deployment_status else 0
        status["available_replicas"] = (deployment_status.available_replicas or 0) if deployment_status else 0

        status["pods"] = [self._pod_info(pod, namespace) for pod in pods.items]
        logger.info(f"Status of {deployment_name}: {status['ready_replicas']}/{status['desired_replicas']} ready")
        return status

    def get_pod_logs(
        self,
        service_id: int,
        pod_name: str,
        container: Optional[str] = None,
        tail_lines: Optional[int] = None,
        previous: bool = False,
    ) -> str:
        """Logs d'un pod du namespace du service"""
        if not pod_name or not pod_name.strip():
            raise ValueError("Pod name is required and must be a non-empty string")

        service = self.service_repository.get_for_deployment(service_id)
        if service is None or service.application.cluster is None:
            raise ServiceNotFound(service_id)

        namespace = sanitize(service.application.namespace)

        kwargs = {"name": pod_name.strip(), "namespace": namespace, "previous": previous}
        if container:
            kwargs["container"] = container
        if tail_lines is not None:
            kwargs["tail_lines"] = tail_lines

        with self.cluster_factory.resolve(service.application.cluster.id) as apis:
            try:
                logs = call_api_sync(f"read logs of pod {pod_name} in {namespace}",
                                     apis.core_api.read_namespaced_pod_log, **kwargs)
            except ClusterApiError as e:
                logger.error(f"Erreur lors de la récupération des logs de {pod_name}: {e}")
                raise

        return logs or ""

    def _pod_info(self, pod, namespace: str) -> Dict[str, Any]:
        pod_status = pod.status
        container_statuses = (pod_status.container_statuses or []) if pod_status else []
        created_at = pod.metadata.creation_timestamp if pod.metadata else None
        containers = pod.spec.containers if pod.spec and pod.spec.containers else []

        return {
            "name": (pod.metadata.name if pod.metadata else None) or "Unknown",
            "namespace": (pod.metadata.namespace if pod.metadata else None) or namespace,
            "status": self._get_pod_status(pod),
            "phase": (pod_status.phase if pod_status else None) or "Unknown",
            "ready": bool(container_statuses) and all(cs.ready for cs in container_statuses),
            "restarts": sum(cs.restart_count or 0 for cs in container_statuses),
            "age": self._calculate_age(created_at) if created_at else "Unknown",
            "node": pod.spec.node_name if pod.spec else None,
            "image": containers[0].image if containers else None,
            "created_at": created_at,
        }

    @staticmethod
    def _get_pod_status(pod) -> str:
        """Statut lisible: Ready prime sur la phase, puis la raison d'attente/arrêt des conteneurs"""
        status = pod.status
        if status is None:
            return "Unknown"

        phase = status.phase
        conditions = status.conditions or []
        if any(c.type == "Ready" and c.status == "True" for c in conditions):
            return "Running"

        if phase in ("Pending", "Failed", "Succeeded"):
            return phase

        container_statuses = status.container_statuses or []
        for cs in container_statuses:
            if cs.state and cs.state.waiting:
                return cs.state.waiting.reason or "Waiting"
        for cs in container_statuses:
            if cs.state and cs.state.terminated:
                return cs.state.terminated.reason or "Terminated"

        return phase or "Unknown"

    @staticmethod
    def _calculate_age(created_at: datetime, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

        seconds = max(int((now - created_at).total_seconds()), 0)
        minutes = seconds // 60
        hours = minutes // 60
        days = hours // 24

        if days > 0:
            return f"{days}d"
        if hours > 0:
            return f"{hours}h"
        if minutes > 0:
            return f"{minutes}m"
        return f"{seconds}s"
