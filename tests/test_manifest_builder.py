import base64
import json

import pytest

from deploy_worker.core.exceptions import IngressUrlInvalid
from deploy_worker.models.service import Service
from deploy_worker.services import manifest_builder
from deploy_worker.services.manifest_builder import (
    MANAGED_BY,
    MANAGED_BY_LABEL,
    build_deployment,
    build_ingress,
    build_network_service,
    build_probe,
    build_registry_secret,
    build_resources,
    build_strategy,
    int_or_percent,
    parse_ingress_host,
)


def make_service(**fields):
    fields.setdefault("name", "Web API")
    fields.setdefault("replicas", 3)
    fields.setdefault("container_port", 8080)
    return Service(**fields)


def test_registry_secret_is_dockerconfigjson():
    secret = build_registry_secret("ghcr", "shop", "ghcr.io", "bot", "hunter2")

    assert secret.type == "kubernetes.io/dockerconfigjson"
    config = json.loads(base64.b64decode(secret.data[".dockerconfigjson"]))
    entry = config["auths"]["ghcr.io"]
    assert entry["username"] == "bot"
    assert entry["password"] == "hunter2"
    assert base64.b64decode(entry["auth"]).decode() == "bot:hunter2"
    assert secret.metadata.labels[MANAGED_BY_LABEL] == MANAGED_BY


def test_resources_use_milli_cpu_and_mebibytes():
    resources = build_resources(make_service(cpu_request=250, memory_limit=512))
    assert resources.requests == {"cpu": "250m"}
    assert resources.limits == {"memory": "512Mi"}


def test_resources_omitted_when_unset():
    assert build_resources(make_service()) is None


def test_resources_keep_explicit_zero():
    resources = build_resources(make_service(cpu_request=0, memory_limit=0))
    assert resources.requests == {"cpu": "0m"}
    assert resources.limits == {"memory": "0Mi"}


def test_probe_only_when_path_is_set():
    assert build_probe(make_service(), "liveness", manifest_builder.LIVENESS_DEFAULTS) is None


def test_probe_defaults():
    service = make_service(liveness_probe_path="/healthz", readiness_probe_path="/ready")

    liveness = build_probe(service, "liveness", manifest_builder.LIVENESS_DEFAULTS)
    readiness = build_probe(service, "readiness", manifest_builder.READINESS_DEFAULTS)

    assert liveness.http_get.path == "/healthz"
    assert liveness.http_get.port == 8080
    assert (liveness.initial_delay_seconds, liveness.period_seconds, liveness.timeout_seconds,
            liveness.success_threshold, liveness.failure_threshold) == (30, 10, 5, 1, 3)
    assert (readiness.initial_delay_seconds, readiness.period_seconds, readiness.timeout_seconds,
            readiness.success_threshold, readiness.failure_threshold) == (5, 10, 5, 1, 3)


def test_probe_overrides():
    service = make_service(readiness_probe_path="/ready", readiness_probe_initial_delay_seconds=0,
                           readiness_probe_failure_threshold=10)
    probe = build_probe(service, "readiness", manifest_builder.READINESS_DEFAULTS)
    assert probe.initial_delay_seconds == 0
    assert probe.failure_threshold == 10
    assert probe.period_seconds == 10


@pytest.mark.parametrize("raw, expected", [("1", 1), ("25%", "25%"), (" 2 ", 2), ("0", 0)])
def test_int_or_percent(raw, expected):
    assert int_or_percent(raw) == expected


def test_strategy_only_when_a_bound_is_set():
    assert build_strategy(make_service()) is None

    strategy = build_strategy(make_service(max_surge="25%", max_unavailable="0"))
    assert strategy.type == "RollingUpdate"
    assert strategy.rolling_update.max_surge == "25%"
    assert strategy.rolling_update.max_unavailable == 0


def test_deployment_shape():
    from kubernetes import client

    service = make_service(liveness_probe_path="/healthz")
    env = [client.V1EnvVar(name="A", value="1")]
    deployment = build_deployment(service, "web-api", "shop", "nginx:1.25", env, ["ghcr"])

    assert deployment.metadata.name == "web-api"
    assert deployment.metadata.namespace == "shop"
    assert deployment.spec.replicas == 3
    assert deployment.spec.selector.match_labels == {"app": "web-api"}
    assert deployment.spec.template.metadata.labels == {"app": "web-api"}

    container = deployment.spec.template.spec.containers[0]
    assert container.name == "web-api"
    assert container.image == "nginx:1.25"
    assert container.ports[0].container_port == 8080
    assert container.env == env
    assert container.liveness_probe is not None
    assert container.readiness_probe is None
    assert [s.name for s in deployment.spec.template.spec.image_pull_secrets] == ["ghcr"]


def test_deployment_without_env_or_pull_secrets():
    deployment = build_deployment(make_service(), "web-api", "shop", "nginx:1.25", [], [])
    assert deployment.spec.template.spec.containers[0].env is None
    assert deployment.spec.template.spec.image_pull_secrets is None
    assert deployment.spec.strategy is None


def test_network_service_selects_workload_pods():
    service = build_network_service("web-api", "shop", "web-api", 8080)
    assert service.spec.type == "ClusterIP"
    assert service.spec.selector == {"app": "web-api"}
    assert service.spec.ports[0].port == 8080
    assert service.spec.ports[0].target_port == 8080


@pytest.mark.parametrize("url, host", [
    ("https://shop.example.com", "shop.example.com"),
    ("http://shop.example.com:8443/path?q=1", "shop.example.com"),
    ("  https://API.Example.com/  ", "api.example.com"),
])
def test_parse_ingress_host(url, host):
    assert parse_ingress_host(url) == host


@pytest.mark.parametrize("url", ["shop.example.com", "not a url", "https://"])
def test_parse_ingress_host_rejects_invalid_urls(url):
    with pytest.raises(IngressUrlInvalid):
        parse_ingress_host(url)


def test_ingress_single_host_prefix_path():
    ingress = build_ingress("web-api", "shop", "shop.example.com", "web-api", 8080, "nginx")

    assert ingress.spec.ingress_class_name == "nginx"
    rule = ingress.spec.rules[0]
    assert rule.host == "shop.example.com"
    path = rule.http.paths[0]
    assert path.path == "/"
    assert path.path_type == "Prefix"
    assert path.backend.service.name == "web-api"
    assert path.backend.service.port.number == 8080
