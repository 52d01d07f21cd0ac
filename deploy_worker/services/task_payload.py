from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from deploy_worker.core.exceptions import UnknownPayload

DEPLOY_KIND = "deploy"

TASK_TYPE_LABELS = {
    DEPLOY_KIND: "Deploy",
}


@dataclass(frozen=True)
class DeployPayload:
    """Intention 'déployer l'image X' sur le service de la tâche"""
    image: str
    deploy_id: Optional[str] = None
    kind: str = DEPLOY_KIND

    def to_dict(self) -> Dict[str, Any]:
        data = {"kind": self.kind, "image": self.image}
        if self.deploy_id is not None:
            data["deployId"] = self.deploy_id
        return data


# Union des payloads reconnus; un seul membre pour l'instant
TaskPayload = Union[DeployPayload]


def decode_payload(raw: Any) -> TaskPayload:
    """Décode le payload stocké une seule fois, en tête de réconciliation"""
    if not isinstance(raw, dict):
        raise UnknownPayload(f"Task payload must be an object, got {type(raw).__name__}")

    kind = raw.get("kind")
    if kind == DEPLOY_KIND:
        image = raw.get("image")
        if not isinstance(image, str) or not image.strip():
            raise UnknownPayload("Deploy payload requires a non-empty 'image'")
        deploy_id = raw.get("deployId")
        return DeployPayload(image=image.strip(), deploy_id=str(deploy_id) if deploy_id is not None else None)

    raise UnknownPayload(f"Unknown task payload kind: {kind!r}")


def task_type_label(kind: str) -> str:
    return TASK_TYPE_LABELS.get(kind, kind)
