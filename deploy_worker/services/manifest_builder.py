# deploy_worker/services/manifest_builder.py
"""
Construction de l'état désiré des objets Kubernetes d'un service.

Fonctions pures: elles ne font aucun appel au cluster, la réconciliation
décide ensuite create ou replace.
"""
import base64
import json
from dataclasses import dataclass
from typing import Dict, List, Optional, Union
from urllib.parse import urlsplit

from kubernetes import client

from deploy_worker.core.exceptions import IngressUrlInvalid
from deploy_worker.models.service import Service

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "deploy-worker"
DOCKER_CONFIG_SECRET_TYPE = "kubernetes.io/dockerconfigjson"


@dataclass(frozen=True)
class ProbeDefaults:
    initial_delay_seconds: int
    period_seconds: int
    timeout_seconds: int
    success_threshold: int
    failure_threshold: int


LIVENESS_DEFAULTS = ProbeDefaults(30, 10, 5, 1, 3)
READINESS_DEFAULTS = ProbeDefaults(5, 10, 5, 1, 3)


def _metadata(name: str, namespace: Optional[str] = None, labels: Optional[Dict[str, str]] = None):
    all_labels = {MANAGED_BY_LABEL: MANAGED_BY}
    all_labels.update(labels or {})
    return client.V1ObjectMeta(name=name, namespace=namespace, labels=all_labels)


def build_namespace(name: str) -> client.V1Namespace:
    return client.V1Namespace(metadata=_metadata(name))


def build_registry_secret(name: str, namespace: str, server: str, username: str,
                          password: str) -> client.V1Secret:
    """Secret .dockerconfigjson pour un registry privé"""
    auth = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    docker_config = {
        "auths": {
            server: {
                "username": username,
                "password": password,
                "auth": auth,
            }
        }
    }
    encoded = base64.b64encode(json.dumps(docker_config).encode("utf-8")).decode("ascii")
    return client.V1Secret(
        metadata=_metadata(name, namespace),
        type=DOCKER_CONFIG_SECRET_TYPE,
        data={".dockerconfigjson": encoded},
    )


def build_resources(service: Service) -> Optional[client.V1ResourceRequirements]:
    requests = {}
    limits = {}
    if service.cpu_request is not None:
        requests["cpu"] = f"{service.cpu_request}m"
    if service.memory_request is not None:
        requests["memory"] = f"{service.memory_request}Mi"
    if service.cpu_limit is not None:
        limits["cpu"] = f"{service.cpu_limit}m"
    if service.memory_limit is not None:
        limits["memory"] = f"{service.memory_limit}Mi"

    if not requests and not limits:
        return None
    return client.V1ResourceRequirements(requests=requests or None, limits=limits or None)


def build_probe(service: Service, kind: str, defaults: ProbeDefaults) -> Optional[client.V1Probe]:
    """kind: 'liveness' ou 'readiness'; None si aucun path n'est configuré"""
    path = getattr(service, f"{kind}_probe_path")
    if not path:
        return None

    def field(name: str) -> int:
        value = getattr(service, f"{kind}_probe_{name}")
        return value if value is not None else getattr(defaults, name)

    return client.V1Probe(
        http_get=client.V1HTTPGetAction(path=path, port=service.container_port),
        initial_delay_seconds=field("initial_delay_seconds"),
        period_seconds=field("period_seconds"),
        timeout_seconds=field("timeout_seconds"),
        success_threshold=field("success_threshold"),
        failure_threshold=field("failure_threshold"),
    )


def int_or_percent(value: str) -> Union[int, str]:
    """'2' -> 2, '25%' -> '25%'"""
    value = value.strip()
    return int(value) if value.isdigit() else value


def build_strategy(service: Service) -> Optional[client.V1DeploymentStrategy]:
    rolling_update = {}
    if service.max_surge:
        rolling_update["max_surge"] = int_or_percent(service.max_surge)
    if service.max_unavailable:
        rolling_update["max_unavailable"] = int_or_percent(service.max_unavailable)

    if not rolling_update:
        return None
    return client.V1DeploymentStrategy(
        type="RollingUpdate",
        rolling_update=client.V1RollingUpdateDeployment(**rolling_update),
    )


def build_deployment(
    service: Service,
    name: str,
    namespace: str,
    image: str,
    env: List[client.V1EnvVar],
    image_pull_secrets: List[str],
) -> client.V1Deployment:
    labels = {"app": name}

    container = client.V1Container(
        name=name,
        image=image,
        ports=[client.V1ContainerPort(container_port=service.container_port, protocol="TCP")],
        env=env or None,
        resources=build_resources(service),
        liveness_probe=build_probe(service, "liveness", LIVENESS_DEFAULTS),
        readiness_probe=build_probe(service, "readiness", READINESS_DEFAULTS),
    )

    pod_spec = client.V1PodSpec(
        containers=[container],
        image_pull_secrets=[client.V1LocalObjectReference(name=s) for s in image_pull_secrets] or None,
    )

    return client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=_metadata(name, namespace, labels),
        spec=client.V1DeploymentSpec(
            replicas=service.replicas,
            strategy=build_strategy(service),
            selector=client.V1LabelSelector(match_labels=labels),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels),
                spec=pod_spec,
            ),
        ),
    )


def build_network_service(name: str, namespace: str, app_label: str, port: int) -> client.V1Service:
    """Service ClusterIP qui sélectionne les pods du deployment (label app)"""
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=_metadata(name, namespace),
        spec=client.V1ServiceSpec(
            selector={"app": app_label},
            ports=[client.V1ServicePort(port=port, target_port=port, protocol="TCP")],
            type="ClusterIP",
        ),
    )


def parse_ingress_host(url: str) -> str:
    try:
        host = urlsplit(url.strip()).hostname
    except ValueError as e:
        raise IngressUrlInvalid(url) from e
    if not host:
        raise IngressUrlInvalid(url)
    return host


def build_ingress(
    name: str,
    namespace: str,
    host: str,
    service_name: str,
    service_port: int,
    ingress_class_name: Optional[str] = None,
) -> client.V1Ingress:
    backend = client.V1IngressBackend(
        service=client.V1IngressServiceBackend(
            name=service_name,
            port=client.V1ServiceBackendPort(number=service_port),
        )
    )
    return client.V1Ingress(
        api_version="networking.k8s.io/v1",
        kind="Ingress",
        metadata=_metadata(name, namespace),
        spec=client.V1IngressSpec(
            ingress_class_name=ingress_class_name,
            rules=[
                client.V1IngressRule(
                    host=host,
                    http=client.V1HTTPIngressRuleValue(
                        paths=[client.V1HTTPIngressPath(path="/", path_type="Prefix", backend=backend)]
                    ),
                )
            ],
        ),
    )
