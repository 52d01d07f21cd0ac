import asyncio
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import Any, Callable, Optional

import yaml
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.config import kube_config

from deploy_worker.core.encryption import CredentialCipher
from deploy_worker.core.exceptions import ClusterApiError, ClusterConfigError, ClusterNotFound

logger = logging.getLogger(__name__)

TEMP_DIR_PREFIX = "deploy-worker-kube-"


@dataclass
class ClusterApis:
    """
    Les trois handles d'API d'un cluster.

    Ressource à portée limitée: les certificats et clés du kubeconfig sont
    écrits par le client kubernetes dans temp_dir, supprimé par close().
    """
    core_api: client.CoreV1Api  # namespaces, secrets, services, pods, logs
    apps_api: client.AppsV1Api  # deployments
    networking_api: client.NetworkingV1Api  # ingresses
    api_client: Optional[client.ApiClient] = None
    temp_dir: Optional[str] = None

    def close(self) -> None:
        if self.api_client is not None:
            self.api_client.close()
            self.api_client = None
        if self.temp_dir is not None:
            _forget_temp_files(self.temp_dir)
            shutil.rmtree(self.temp_dir, ignore_errors=True)
            self.temp_dir = None

    def __enter__(self) -> "ClusterApis":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _forget_temp_files(temp_dir: str) -> None:
    # kube_config garde un cache contenu -> fichier, qui pointerait vers un fichier supprimé
    for content, path in list(kube_config._temp_files.items()):
        if path.startswith(os.path.join(temp_dir, "")):
            del kube_config._temp_files[content]


def build_api_client(kubeconfig: str, temp_dir: Optional[str] = None) -> client.ApiClient:
    """Construit un ApiClient à partir d'un kubeconfig YAML déchiffré"""
    try:
        config_dict = yaml.safe_load(kubeconfig)
    except yaml.YAMLError as e:
        raise ClusterConfigError(f"Invalid kubeconfig YAML: {e}") from e

    if not isinstance(config_dict, dict):
        raise ClusterConfigError("Kubeconfig must be a YAML mapping")

    try:
        return config.new_client_from_config_dict(config_dict, temp_file_path=temp_dir)
    except config.ConfigException as e:
        raise ClusterConfigError(f"Invalid kubeconfig: {e}") from e


class ClusterClientFactory:
    """
    Résout un cluster en handles d'API.

    Pas de cache: le kubeconfig déchiffré ne vit que le temps d'une
    réconciliation, l'appelant ferme les handles (with apis: ...).
    """

    def __init__(
        self,
        cluster_repository,
        cipher: CredentialCipher,
        api_client_builder: Callable[[str, Optional[str]], client.ApiClient] = build_api_client,
    ):
        self.cluster_repository = cluster_repository
        self.cipher = cipher
        self._build_api_client = api_client_builder

    def resolve(self, cluster_id: int) -> ClusterApis:
        cluster = self.cluster_repository.get_by_id(cluster_id)
        if cluster is None:
            raise ClusterNotFound(cluster_id)

        # DecryptionError (mauvaise master key) remonte tel quel
        kubeconfig = self.cipher.decrypt(cluster.kubeconfig)

        temp_dir = tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX)
        try:
            api_client = self._build_api_client(kubeconfig, temp_dir)
        except Exception:
            _forget_temp_files(temp_dir)
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise
        logger.info(f"Kubernetes clients ready for cluster {cluster.name} ({cluster_id})")

        return ClusterApis(
            core_api=client.CoreV1Api(api_client),
            apps_api=client.AppsV1Api(api_client),
            networking_api=client.NetworkingV1Api(api_client),
            api_client=api_client,
            temp_dir=temp_dir,
        )


def call_api_sync(operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
    """Appel du client kubernetes; ApiException -> ClusterApiError"""
    try:
        return fn(*args, **kwargs)
    except ApiException as e:
        raise ClusterApiError(operation, e.status, e.reason) from e


def read_or_none_sync(operation: str, fn: Callable[..., Any], *args, **kwargs) -> Optional[Any]:
    """Test d'existence: 404 -> None, toute autre erreur est fatale"""
    try:
        return call_api_sync(operation, fn, *args, **kwargs)
    except ClusterApiError as e:
        if e.status == 404:
            return None
        raise


async def call_api(operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
    """Exécute un appel bloquant du client kubernetes dans un thread"""
    return await asyncio.to_thread(call_api_sync, operation, fn, *args, **kwargs)


async def read_or_none(operation: str, fn: Callable[..., Any], *args, **kwargs) -> Optional[Any]:
    return await asyncio.to_thread(read_or_none_sync, operation, fn, *args, **kwargs)
