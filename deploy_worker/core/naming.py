import re

_INVALID_CHARS = re.compile(r"[^a-z0-9-]")
_HYPHEN_RUNS = re.compile(r"-+")

DEFAULT_MAX_LENGTH = 63


def sanitize(name: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """
    Convertit un nom quelconque en nom de ressource Kubernetes valide.

    Les noms Kubernetes doivent être en minuscules, ne contenir que
    [a-z0-9-] et commencer et finir par un caractère alphanumérique.
    Deux noms différents peuvent donner le même résultat.
    """
    value = _INVALID_CHARS.sub("-", name.lower())
    value = _HYPHEN_RUNS.sub("-", value).strip("-")
    # La troncature peut laisser un '-' final
    return value[:max(max_length, 0)].rstrip("-")
