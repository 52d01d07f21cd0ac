"""
Test configuration for the deploy worker.

The store is an in-memory SQLite database (StaticPool, shared across the
threads used by asyncio.to_thread). The cluster is an in-memory fake that
implements the kubernetes-client methods the worker calls, raising
ApiException(status=404) for absent objects and recording every call.
"""
import os
import tempfile

os.environ.setdefault("ENCRYPTION_KEY", "test-master-key")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from types import SimpleNamespace  # noqa: E402
from typing import Any, Dict, List, Optional, Tuple  # noqa: E402

import pytest  # noqa: E402
from kubernetes.client.exceptions import ApiException  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import deploy_worker.models  # noqa: E402,F401
from deploy_worker.core.database import Base, make_session_factory  # noqa: E402
from deploy_worker.core.encryption import CipherKey, CredentialCipher  # noqa: E402
from deploy_worker.external.k8s_client import TEMP_DIR_PREFIX, ClusterApis  # noqa: E402
from deploy_worker.models import (  # noqa: E402
    Application,
    Cluster,
    EnvBinding,
    RegistryCredential,
    Service,
)
from deploy_worker.repositories.cluster_repository import ClusterRepository  # noqa: E402
from deploy_worker.repositories.service_repository import ServiceRepository  # noqa: E402
from deploy_worker.repositories.task_repository import TaskRepository  # noqa: E402

TEST_MASTER_KEY = "test-master-key"


# ============================================================
# Store
# ============================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def task_repository(session_factory):
    return TaskRepository(session_factory)


@pytest.fixture
def service_repository(session_factory):
    return ServiceRepository(session_factory)


@pytest.fixture
def cluster_repository(session_factory):
    return ClusterRepository(session_factory)


@pytest.fixture
def cipher():
    return CredentialCipher(CipherKey.from_master_key(TEST_MASTER_KEY))


class Seeder:
    """Crée les enregistrements du store avec des valeurs chiffrées"""

    def __init__(self, session_factory, cipher: CredentialCipher):
        self.session_factory = session_factory
        self.cipher = cipher

    def _save(self, obj):
        with self.session_factory() as db:
            db.add(obj)
            db.commit()
            db.refresh(obj)
            return obj

    def cluster(self, name: str = "prod-cluster", kubeconfig: str = "apiVersion: v1\nkind: Config\n") -> Cluster:
        return self._save(Cluster(name=name, kubeconfig=self.cipher.encrypt(kubeconfig)))

    def application(self, name: str = "Shop", namespace: str = "Shop Prod",
                    cluster: Optional[Cluster] = None) -> Application:
        return self._save(Application(name=name, namespace=namespace,
                                      cluster_id=cluster.id if cluster else None))

    def service(
        self,
        application: Application,
        name: str = "Web API",
        registry_credentials: Optional[List[Tuple[str, str, str, str]]] = None,
        env: Optional[Dict[str, str]] = None,
        raw_env: Optional[Dict[str, str]] = None,
        **fields: Any,
    ) -> Service:
        """
        registry_credentials: (name, server, username, password en clair)
        env: variables chiffrées avec la bonne clé; raw_env: valeurs stockées telles quelles
        """
        fields.setdefault("replicas", 2)
        fields.setdefault("container_port", 8080)
        with self.session_factory() as db:
            service = Service(name=name, application_id=application.id, **fields)
            for cred_name, server, username, password in registry_credentials or []:
                service.registry_credentials.append(RegistryCredential(
                    name=cred_name, server=server, username=username,
                    password=self.cipher.encrypt(password),
                ))
            for key, value in (env or {}).items():
                service.env_bindings.append(EnvBinding(key=key, value=self.cipher.encrypt(value)))
            for key, value in (raw_env or {}).items():
                service.env_bindings.append(EnvBinding(key=key, value=value))
            db.add(service)
            db.commit()
            db.refresh(service)
            return service

    def update_service(self, service_id: int, **fields: Any) -> None:
        with self.session_factory() as db:
            service = db.get(Service, service_id)
            for name, value in fields.items():
                setattr(service, name, value)
            db.commit()


@pytest.fixture
def seed(session_factory, cipher):
    return Seeder(session_factory, cipher)


# ============================================================
# Fake cluster
# ============================================================

def _not_found(kind: str, name: str) -> ApiException:
    return ApiException(status=404, reason=f"{kind} \"{name}\" not found")


class _FakeApi:
    def __init__(self, cluster: "FakeCluster"):
        self._cluster = cluster

    def _record(self, method: str, **kwargs):
        self._cluster.record(method, **kwargs)


class FakeCoreApi(_FakeApi):
    def list_namespace(self, **kwargs):
        self._record("list_namespace")
        return SimpleNamespace(items=list(self._cluster.namespaces.values()))

    def create_namespace(self, body, **kwargs):
        self._record("create_namespace", name=body.metadata.name)
        self._cluster.namespaces[body.metadata.name] = body
        return body

    def read_namespaced_secret(self, name, namespace, **kwargs):
        self._record("read_namespaced_secret", name=name, namespace=namespace)
        return self._cluster.get("Secret", namespace, name)

    def create_namespaced_secret(self, namespace, body, **kwargs):
        self._record("create_namespaced_secret", name=body.metadata.name, namespace=namespace)
        return self._cluster.create("Secret", namespace, body)

    def read_namespaced_service(self, name, namespace, **kwargs):
        self._record("read_namespaced_service", name=name, namespace=namespace)
        return self._cluster.get("Service", namespace, name)

    def create_namespaced_service(self, namespace, body, **kwargs):
        self._record("create_namespaced_service", name=body.metadata.name, namespace=namespace)
        body.spec.cluster_ip = "10.96.0.10"
        return self._cluster.create("Service", namespace, body)

    def replace_namespaced_service(self, name, namespace, body, **kwargs):
        self._record("replace_namespaced_service", name=name, namespace=namespace)
        live = self._cluster.get("Service", namespace, name)
        if body.spec.cluster_ip != live.spec.cluster_ip:
            raise ApiException(status=422, reason="spec.clusterIP: field is immutable")
        return self._cluster.replace("Service", namespace, name, body)

    def list_namespaced_pod(self, namespace, label_selector=None, **kwargs):
        self._record("list_namespaced_pod", namespace=namespace, label_selector=label_selector)
        pods = self._cluster.pods.get(namespace, [])
        if label_selector:
            key, _, value = label_selector.partition("=")
            pods = [p for p in pods if (p.metadata.labels or {}).get(key) == value]
        return SimpleNamespace(items=pods)

    def read_namespaced_pod_log(self, name, namespace, **kwargs):
        self._record("read_namespaced_pod_log", name=name, namespace=namespace, **kwargs)
        if (namespace, name) not in self._cluster.pod_logs:
            raise _not_found("Pod", name)
        return self._cluster.pod_logs[(namespace, name)]


class FakeAppsApi(_FakeApi):
    def read_namespaced_deployment(self, name, namespace, **kwargs):
        self._record("read_namespaced_deployment", name=name, namespace=namespace)
        return self._cluster.get("Deployment", namespace, name)

    def create_namespaced_deployment(self, namespace, body, **kwargs):
        self._record("create_namespaced_deployment", name=body.metadata.name, namespace=namespace)
        return self._cluster.create("Deployment", namespace, body)

    def replace_namespaced_deployment(self, name, namespace, body, **kwargs):
        self._record("replace_namespaced_deployment", name=name, namespace=namespace)
        return self._cluster.replace("Deployment", namespace, name, body)


class FakeNetworkingApi(_FakeApi):
    def read_namespaced_ingress(self, name, namespace, **kwargs):
        self._record("read_namespaced_ingress", name=name, namespace=namespace)
        return self._cluster.get("Ingress", namespace, name)

    def create_namespaced_ingress(self, namespace, body, **kwargs):
        self._record("create_namespaced_ingress", name=body.metadata.name, namespace=namespace)
        return self._cluster.create("Ingress", namespace, body)

    def replace_namespaced_ingress(self, name, namespace, body, **kwargs):
        self._record("replace_namespaced_ingress", name=name, namespace=namespace)
        return self._cluster.replace("Ingress", namespace, name, body)

    def delete_namespaced_ingress(self, name, namespace, **kwargs):
        self._record("delete_namespaced_ingress", name=name, namespace=namespace)
        self._cluster.get("Ingress", namespace, name)
        del self._cluster.objects[("Ingress", namespace, name)]
        return SimpleNamespace(status="Success")


class FakeCluster:
    """
    Cluster en mémoire.

    failures: {nom de méthode: status HTTP} pour injecter une ApiException.
    Les replace vérifient le resourceVersion (409 si périmé), comme l'API server.
    """

    def __init__(self):
        self.namespaces: Dict[str, Any] = {}
        self.objects: Dict[Tuple[str, str, str], Any] = {}
        self.pods: Dict[str, List[Any]] = {}
        self.pod_logs: Dict[Tuple[str, str], str] = {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.failures: Dict[str, int] = {}
        self._version = 0

        self.apis = ClusterApis(
            core_api=FakeCoreApi(self),
            apps_api=FakeAppsApi(self),
            networking_api=FakeNetworkingApi(self),
        )

    def record(self, method: str, **kwargs):
        self.calls.append((method, kwargs))
        if method in self.failures:
            raise ApiException(status=self.failures[method], reason="Injected failure")

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def get(self, kind: str, namespace: str, name: str):
        try:
            return self.objects[(kind, namespace, name)]
        except KeyError:
            raise _not_found(kind, name)

    def create(self, kind: str, namespace: str, body):
        key = (kind, namespace, body.metadata.name)
        if key in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        stored = body
        stored.metadata.resource_version = self._next_version()
        self.objects[key] = stored
        return stored

    def replace(self, kind: str, namespace: str, name: str, body):
        live = self.get(kind, namespace, name)
        if body.metadata.resource_version != live.metadata.resource_version:
            raise ApiException(status=409, reason="Conflict: resourceVersion mismatch")
        stored = body
        stored.metadata.resource_version = self._next_version()
        self.objects[(kind, namespace, name)] = stored
        return stored

    def object(self, kind: str, namespace: str, name: str):
        return self.objects.get((kind, namespace, name))


class FakeClusterFactory:
    """
    Remplace ClusterClientFactory: pas de kubeconfig, compte les résolutions.

    Chaque résolution crée un répertoire contenant une fausse clé, comme le
    client kubernetes avec un kubeconfig à certificats; close() doit le supprimer.
    """

    def __init__(self, cluster: FakeCluster, base_dir: Optional[str] = None):
        self.cluster = cluster
        self.base_dir = base_dir
        self.resolved: List[int] = []
        self.temp_dirs: List[str] = []

    def resolve(self, cluster_id: int) -> ClusterApis:
        self.resolved.append(cluster_id)
        temp_dir = tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX, dir=self.base_dir)
        with open(os.path.join(temp_dir, "client-key"), "w") as f:
            f.write("fake private key")
        self.temp_dirs.append(temp_dir)
        return ClusterApis(
            core_api=self.cluster.apis.core_api,
            apps_api=self.cluster.apis.apps_api,
            networking_api=self.cluster.apis.networking_api,
            temp_dir=temp_dir,
        )

    def leftover_dirs(self) -> List[str]:
        return [d for d in self.temp_dirs if os.path.exists(d)]


@pytest.fixture
def fake_cluster():
    return FakeCluster()


@pytest.fixture
def cluster_factory(fake_cluster, tmp_path):
    return FakeClusterFactory(fake_cluster, base_dir=str(tmp_path))
