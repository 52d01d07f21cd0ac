# deploy_worker/services/reconciliation_service.py
import asyncio
import logging
from typing import List, Optional

from kubernetes import client

from deploy_worker.core.encryption import CredentialCipher
from deploy_worker.core.exceptions import (
    ApplicationClusterMissing,
    ClusterApiError,
    DecryptionError,
    EnvDecryptFailure,
    IngressUrlInvalid,
    ServiceNotFound,
)
from deploy_worker.core.naming import sanitize
from deploy_worker.external.k8s_client import ClusterApis, ClusterClientFactory, call_api, read_or_none
from deploy_worker.models.env_binding import EnvBinding
from deploy_worker.models.registry_credential import RegistryCredential
from deploy_worker.models.service import Service
from deploy_worker.models.task import Task
from deploy_worker.services import manifest_builder
from deploy_worker.services.task_payload import DeployPayload, decode_payload, task_type_label
from deploy_worker.services.task_state import TaskJournal

logger = logging.getLogger(__name__)


class ReconciliationService:
    """
    Matérialise la déclaration d'un service sur son cluster.

    Ordre strict: namespace -> secrets registry -> deployment -> service -> ingress.
    Chaque objet suit le schéma lecture puis create (404) ou replace; seul un
    404 est attendu, toute autre erreur d'API interrompt la tâche.
    """

    def __init__(
        self,
        task_repository,
        service_repository,
        cluster_factory: ClusterClientFactory,
        cipher: CredentialCipher,
        ingress_class_name: Optional[str] = None,
    ):
        self.task_repository = task_repository
        self.service_repository = service_repository
        self.cluster_factory = cluster_factory
        self.cipher = cipher
        self.ingress_class_name = ingress_class_name

    async def run(self, task: Task) -> None:
        """Réclame la tâche puis la réconcilie; une tâche déjà réclamée est ignorée"""
        if not await self.claim(task):
            return
        await self.reconcile(task)

    async def claim(self, task: Task) -> bool:
        """WAITING -> EXECUTING; False si un autre worker l'a prise"""
        if not await TaskJournal(self.task_repository, task.id).start():
            logger.warning(f"Task {task.id} already claimed, skipping")
            return False
        return True

    async def reconcile(self, task: Task) -> None:
        """Réconciliation d'une tâche déjà EXECUTING, terminée en DONE ou FAILED"""
        journal = TaskJournal(self.task_repository, task.id)

        try:
            await journal.log(f"Starting deployment task {task.id}")

            payload = decode_payload(task.payload)
            if isinstance(payload, DeployPayload):
                await self._deploy(journal, task, payload)

            await journal.complete("✓ Deployment completed successfully")
            logger.info(f"✅ Task {task.id} done")
        except Exception as e:
            logger.error(f"❌ Task {task.id} failed: {e}")
            await journal.fail(e)
            raise

    async def _deploy(self, journal: TaskJournal, task: Task, payload: DeployPayload) -> None:
        await journal.log(f"Task type: {task_type_label(payload.kind)}")
        await journal.log(f"Image: {payload.image}")

        await journal.log("Loading service configuration...")
        service = await asyncio.to_thread(self.service_repository.get_for_deployment, task.service_id)
        if service is None:
            raise ServiceNotFound(task.service_id)

        application = service.application
        await journal.log(f"Service: {service.name}")
        await journal.log(f"Application: {application.name}")
        await journal.log(f"Namespace: {application.namespace}")

        if application.cluster is None:
            raise ApplicationClusterMissing(application.id)
        await journal.log(f"Cluster: {application.cluster.name}")

        await journal.log("Loading Kubernetes configuration...")
        apis = await asyncio.to_thread(self.cluster_factory.resolve, application.cluster.id)
        with apis:
            await journal.log("✓ Kubernetes configuration loaded")
            namespace = await self.ensure_namespace(apis, journal, application.namespace)
            pull_secrets = await self.ensure_registry_secrets(apis, journal, namespace,
                                                              service.registry_credentials)
            env = await self.decrypt_env(journal, service.env_bindings)

            workload_name = sanitize(service.name)
            await self.upsert_deployment(apis, journal, service, workload_name, namespace, payload.image, env,
                                         pull_secrets)
            await self.upsert_network_service(apis, journal, service, workload_name, namespace)
            await self.reconcile_ingress(apis, journal, service, workload_name, namespace)

    # ------------------------------------------------------------------
    # Namespace
    # ------------------------------------------------------------------

    async def ensure_namespace(self, apis: ClusterApis, journal: TaskJournal, name: str) -> str:
        namespace = sanitize(name)

        namespaces = await call_api("list namespaces", apis.core_api.list_namespace)
        existing = {ns.metadata.name for ns in namespaces.items}
        if namespace in existing:
            await journal.log(f"Namespace {namespace} already exists, skipping creation")
            return namespace

        await journal.log(f"Creating namespace {namespace}...")
        await call_api(f"create namespace {namespace}", apis.core_api.create_namespace,
                       body=manifest_builder.build_namespace(namespace))
        await journal.log(f"✓ Namespace {namespace} created successfully")
        return namespace

    # ------------------------------------------------------------------
    # Registry secrets
    # ------------------------------------------------------------------

    async def ensure_registry_secrets(self, apis: ClusterApis, journal: TaskJournal, namespace: str,
                                      credentials: List[RegistryCredential]) -> List[str]:
        if not credentials:
            await journal.log("No Docker secrets configured")
            return []

        await journal.log(f"Processing {len(credentials)} Docker secret(s)...")
        secret_names = []
        for credential in credentials:
            secret_names.append(await self._ensure_registry_secret(apis, journal, namespace, credential))
        return secret_names

    async def _ensure_registry_secret(self, apis: ClusterApis, journal: TaskJournal, namespace: str,
                                      credential: RegistryCredential) -> str:
        secret_name = sanitize(credential.name)

        existing = await read_or_none(f"read secret {secret_name}", apis.core_api.read_namespaced_secret,
                                      name=secret_name, namespace=namespace)
        if existing is not None:
            # Jamais modifié, même si le credential a changé en base
            await journal.log(f"Docker secret {secret_name} already exists in {namespace}, skipping creation")
            return secret_name

        await journal.log(f"Creating Docker secret {secret_name} for registry {credential.server}...")
        body = manifest_builder.build_registry_secret(
            secret_name, namespace, credential.server, credential.username,
            self.cipher.decrypt(credential.password),
        )
        await call_api(f"create secret {secret_name}", apis.core_api.create_namespaced_secret,
                       namespace=namespace, body=body)
        await journal.log(f"✓ Docker secret {secret_name} created successfully in {namespace}")
        return secret_name

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    async def decrypt_env(self, journal: TaskJournal, bindings: List[EnvBinding]) -> List[client.V1EnvVar]:
        """Une variable indéchiffrable est ignorée (warning), les autres sont déployées"""
        await journal.log(f"Processing {len(bindings)} environment variable(s)...")
        env = []
        for binding in bindings:
            try:
                env.append(client.V1EnvVar(name=binding.key, value=self._decrypt_binding(binding)))
                await journal.log(f"  ✓ {binding.key}")
            except EnvDecryptFailure as e:
                await journal.warn(str(e))
        return env

    def _decrypt_binding(self, binding: EnvBinding) -> str:
        try:
            return self.cipher.decrypt(binding.value)
        except DecryptionError as e:
            raise EnvDecryptFailure(binding.key, e) from e

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    async def upsert_deployment(self, apis: ClusterApis, journal: TaskJournal, service: Service, name: str,
                                namespace: str, image: str, env: List[client.V1EnvVar],
                                pull_secrets: List[str]) -> None:
        await journal.log("Creating/updating deployment...")
        body = manifest_builder.build_deployment(service, name, namespace, image, env, pull_secrets)

        existing = await read_or_none(f"read deployment {name}", apis.apps_api.read_namespaced_deployment,
                                      name=name, namespace=namespace)
        if existing is not None:
            await journal.log(f"Deployment {name} already exists, updating...")
            await self._log_deployment_details(journal, service, image, env, pull_secrets)
            body.metadata.resource_version = existing.metadata.resource_version
            await call_api(f"replace deployment {name}", apis.apps_api.replace_namespaced_deployment,
                           name=name, namespace=namespace, body=body)
            await journal.log(f"✓ Deployment {name} updated successfully in {namespace}")
            return

        await journal.log(f"Creating deployment {name}...")
        await self._log_deployment_details(journal, service, image, env, pull_secrets)
        await call_api(f"create deployment {name}", apis.apps_api.create_namespaced_deployment,
                       namespace=namespace, body=body)
        await journal.log(f"✓ Deployment {name} created successfully in {namespace}")

    async def _log_deployment_details(self, journal: TaskJournal, service: Service, image: str,
                                      env: List[client.V1EnvVar], pull_secrets: List[str]) -> None:
        await journal.log(f"  Image: {image}")
        await journal.log(f"  Replicas: {service.replicas}")
        await journal.log(f"  Container Port: {service.container_port}")
        if service.liveness_probe_path:
            await journal.log(f"  Liveness Probe: {service.liveness_probe_path}")
        if service.readiness_probe_path:
            await journal.log(f"  Readiness Probe: {service.readiness_probe_path}")
        if service.max_surge or service.max_unavailable:
            await journal.log(
                f"  Rolling Update: maxSurge={service.max_surge or 'default'}, "
                f"maxUnavailable={service.max_unavailable or 'default'}"
            )
        if env:
            await journal.log(f"  Environment Variables: {len(env)}")
        if pull_secrets:
            await journal.log(f"  Image Pull Secrets: {len(pull_secrets)}")

    # ------------------------------------------------------------------
    # Network service
    # ------------------------------------------------------------------

    async def upsert_network_service(self, apis: ClusterApis, journal: TaskJournal, service: Service,
                                     name: str, namespace: str) -> None:
        await journal.log("Creating Kubernetes service...")
        body = manifest_builder.build_network_service(name, namespace, name, service.container_port)

        existing = await read_or_none(f"read service {name}", apis.core_api.read_namespaced_service,
                                      name=name, namespace=namespace)
        if existing is not None:
            await journal.log(f"Service {name} already exists, updating...")
            body.metadata.resource_version = existing.metadata.resource_version
            # clusterIP est immuable côté API server
            body.spec.cluster_ip = existing.spec.cluster_ip if existing.spec else None
            await call_api(f"replace service {name}", apis.core_api.replace_namespaced_service,
                           name=name, namespace=namespace, body=body)
            await journal.log(f"✓ Service {name} updated successfully in {namespace}")
            return

        await journal.log(f"Creating Kubernetes service {name} on port {service.container_port}...")
        await call_api(f"create service {name}", apis.core_api.create_namespaced_service,
                       namespace=namespace, body=body)
        await journal.log(f"✓ Service {name} created successfully in {namespace}")

    # ------------------------------------------------------------------
    # Ingress
    # ------------------------------------------------------------------

    async def reconcile_ingress(self, apis: ClusterApis, journal: TaskJournal, service: Service, name: str,
                                namespace: str) -> None:
        if not service.ingress_url:
            await journal.log("No ingress URL configured, checking for existing ingress to delete...")
            await self.delete_ingress(apis, journal, name, namespace)
            return

        await journal.log("Creating/updating ingress...")
        try:
            host = manifest_builder.parse_ingress_host(service.ingress_url)
        except IngressUrlInvalid as e:
            await journal.warn(f"Failed to create ingress - {e}")
            return

        body = manifest_builder.build_ingress(name, namespace, host, name, service.container_port,
                                              self.ingress_class_name)

        existing = await read_or_none(f"read ingress {name}", apis.networking_api.read_namespaced_ingress,
                                      name=name, namespace=namespace)
        if existing is not None:
            await journal.log(f"Ingress {name} already exists, updating...")
            await journal.log(f"  Host: {host}")
            body.metadata.resource_version = existing.metadata.resource_version
            await call_api(f"replace ingress {name}", apis.networking_api.replace_namespaced_ingress,
                           name=name, namespace=namespace, body=body)
            await journal.log(f"✓ Ingress {name} updated successfully in {namespace}")
            return

        await journal.log(f"Creating ingress {name} for host {host}...")
        await call_api(f"create ingress {name}", apis.networking_api.create_namespaced_ingress,
                       namespace=namespace, body=body)
        await journal.log(f"✓ Ingress {name} created successfully in {namespace}")

    async def delete_ingress(self, apis: ClusterApis, journal: TaskJournal, name: str, namespace: str) -> None:
        """Retire la route publiée; absente = succès, autre erreur = warning"""
        await journal.log(f"Deleting ingress {name} from {namespace}...")
        try:
            deleted = await read_or_none(f"delete ingress {name}", apis.networking_api.delete_namespaced_ingress,
                                         name=name, namespace=namespace)
        except ClusterApiError as e:
            await journal.warn(f"Failed to delete ingress: {e}")
            return

        if deleted is None:
            await journal.log(f"Ingress {name} does not exist in {namespace}, skipping deletion")
        else:
            await journal.log(f"✓ Ingress {name} deleted successfully from {namespace}")
