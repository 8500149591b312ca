"""Trust verdict data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple


class Verdict(str, Enum):
    """Outcome of validating one image or one pod against trust policy."""
    TRUSTED = "Trusted"
    UNTRUSTED = "Untrusted"
    UNVERIFIABLE = "Unverifiable"
    NOT_APPLICABLE = "NotApplicable"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ImageVerdict:
    """Verdict for a single container image."""
    image: str
    verdict: Verdict
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"image": self.image, "verdict": self.verdict.value, "reason": self.reason}


@dataclass(frozen=True)
class PodKey:
    """Identity of a pod in the cluster."""
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class PodVerdict:
    """Aggregated verdict for all containers of one pod."""
    namespace: str
    name: str
    resource_version: str
    verdict: Verdict
    images: Tuple[ImageVerdict, ...] = field(default_factory=tuple)

    @property
    def key(self) -> PodKey:
        return PodKey(self.namespace, self.name)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "Namespace": self.namespace,
            "Name": self.name,
            "ResourceVersion": self.resource_version,
            "Verdict": self.verdict.value,
            "Images": [image.to_dict() for image in self.images],
        }
