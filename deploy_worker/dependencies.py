from functools import lru_cache

from deploy_worker.config import settings
from deploy_worker.core.database import get_db_manager
from deploy_worker.core.encryption import CipherKey, CredentialCipher
from deploy_worker.external.k8s_client import ClusterClientFactory
from deploy_worker.repositories.cluster_repository import ClusterRepository
from deploy_worker.repositories.service_repository import ServiceRepository
from deploy_worker.repositories.task_repository import TaskRepository
from deploy_worker.services.k8s_service import K8sService
from deploy_worker.services.reconciliation_service import ReconciliationService
from deploy_worker.workers.dispatcher_worker import DispatcherWorker


# === CHIFFREMENT ===
@lru_cache()
def get_cipher() -> CredentialCipher:
    """Clé dérivée une seule fois; ConfigurationError si ENCRYPTION_KEY est absente"""
    return CredentialCipher(CipherKey.from_master_key(settings.ENCRYPTION_KEY))


# === REPOSITORIES ===
@lru_cache()
def get_task_repository() -> TaskRepository:
    return TaskRepository(get_db_manager().session_factory)


@lru_cache()
def get_service_repository() -> ServiceRepository:
    return ServiceRepository(get_db_manager().session_factory)


@lru_cache()
def get_cluster_repository() -> ClusterRepository:
    return ClusterRepository(get_db_manager().session_factory)


# === CLIENTS EXTERNES ===
@lru_cache()
def get_cluster_client_factory() -> ClusterClientFactory:
    return ClusterClientFactory(get_cluster_repository(), get_cipher())


# === SERVICES ===
@lru_cache()
def get_reconciliation_service() -> ReconciliationService:
    return ReconciliationService(
        task_repository=get_task_repository(),
        service_repository=get_service_repository(),
        cluster_factory=get_cluster_client_factory(),
        cipher=get_cipher(),
        ingress_class_name=settings.INGRESS_CLASS_NAME,
    )


def get_k8s_service() -> K8sService:
    return K8sService(get_service_repository(), get_cluster_client_factory())


# === WORKERS ===
_dispatcher_worker_instance = None


def get_dispatcher_worker() -> DispatcherWorker:
    """Factory pour le worker de dispatch (singleton)"""
    global _dispatcher_worker_instance
    if _dispatcher_worker_instance is None:
        _dispatcher_worker_instance = DispatcherWorker(
            task_repository=get_task_repository(),
            reconciliation_service=get_reconciliation_service(),
            poll_interval=settings.POLL_INTERVAL_SECONDS,
            reconcile_timeout=settings.RECONCILE_TIMEOUT_SECONDS,
            recover_stale=settings.RECOVER_STALE_TASKS,
        )
    return _dispatcher_worker_instance
