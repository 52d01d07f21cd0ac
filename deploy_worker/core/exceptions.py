# deploy_worker/core/exceptions.py
from typing import Optional


class DeployWorkerError(Exception):
    """Base class for all deploy worker errors."""
    pass


class ConfigurationError(DeployWorkerError):
    """Process configuration is missing or invalid."""
    pass


# -----------------------------
# Store lookups
# -----------------------------

class ClusterNotFound(DeployWorkerError):
    def __init__(self, cluster_id):
        self.cluster_id = cluster_id
        super().__init__(f"Cluster {cluster_id} not found")


class ServiceNotFound(DeployWorkerError):
    def __init__(self, service_id):
        self.service_id = service_id
        super().__init__(f"Service {service_id} not found")


class ApplicationClusterMissing(DeployWorkerError):
    def __init__(self, application_id):
        self.application_id = application_id
        super().__init__(f"Cluster not found for application {application_id}")


class ClusterConfigError(DeployWorkerError):
    """Decrypted kubeconfig could not be turned into an API client."""
    pass


# -----------------------------
# Work items
# -----------------------------

class UnknownPayload(DeployWorkerError):
    """Task payload is not a recognised tagged record."""
    pass


class InvalidTaskTransition(DeployWorkerError):
    pass


# -----------------------------
# Credential cipher
# -----------------------------

class DecryptionError(DeployWorkerError):
    """Base class for every decryption failure."""
    likely_wrong_key = False


class CiphertextTooShortError(DecryptionError):
    pass


class CiphertextEncodingError(DecryptionError):
    pass


class WrongMasterKeyError(DecryptionError):
    """Authentication tag mismatch: wrong master key or corrupted data."""
    likely_wrong_key = True


# -----------------------------
# Cluster API
# -----------------------------

class ClusterApiError(DeployWorkerError):
    """Wraps a control-plane error that is not an expected 404."""

    def __init__(self, operation: str, status: Optional[int], reason: Optional[str]):
        self.operation = operation
        self.status = status
        self.reason = reason
        super().__init__(f"{operation} failed with status {status}: {reason}")


# -----------------------------
# Non-fatal, logged as warnings
# -----------------------------

class IngressUrlInvalid(DeployWorkerError):
    def __init__(self, url: str):
        self.url = url
        super().__init__(f"invalid URL: {url}")


class EnvDecryptFailure(DeployWorkerError):
    def __init__(self, key: str, cause: Exception):
        self.key = key
        super().__init__(f"Failed to decrypt env variable {key}: {cause}")
