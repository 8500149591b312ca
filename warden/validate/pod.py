"""Pod-level trust validation."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from kubernetes.client import V1Pod

from ..errors import ImageReferenceError
from ..models.image import digest_from_image_id, parse_image_reference
from ..models.verdict import ImageVerdict, PodVerdict, Verdict
from ..utils.cancel import CancelToken
from .image import ImageValidator


logger = logging.getLogger(__name__)

INIT = "init"
REGULAR = "regular"
EPHEMERAL = "ephemeral"


@dataclass(frozen=True)
class PodImage:
    """A container image as referenced by one container of a pod."""
    container: str
    kind: str
    image: str
    resolved_digest: Optional[str] = None


def _inline_digest(image: str) -> Optional[str]:
    try:
        return parse_image_reference(image).digest
    except ImageReferenceError:
        return None


def _status_digests(statuses) -> Dict[str, Optional[str]]:
    return {status.name: digest_from_image_id(status.image_id) for status in statuses or []}


def pod_images(pod: V1Pod) -> List[PodImage]:
    """Collect init, regular and ephemeral container images of a pod.

    An image pinned by digest is resolved as written. Otherwise the digest
    comes from the container status ``imageID`` once the runtime has pulled it.
    """
    spec = pod.spec
    status = pod.status
    groups = (
        (INIT, spec.init_containers, status.init_container_statuses if status else None),
        (REGULAR, spec.containers, status.container_statuses if status else None),
        (EPHEMERAL, spec.ephemeral_containers, status.ephemeral_container_statuses if status else None),
    )

    images = []
    for kind, containers, statuses in groups:
        digests = _status_digests(statuses)
        for container in containers or []:
            images.append(PodImage(
                container=container.name,
                kind=kind,
                image=container.image or "",
                resolved_digest=_inline_digest(container.image or "") or digests.get(container.name),
            ))
    return images


def aggregate(verdicts: Iterable[Verdict]) -> Verdict:
    """Fold per-container verdicts into a pod verdict, strongest negative first."""
    seen = set(verdicts)
    if Verdict.UNTRUSTED in seen:
        return Verdict.UNTRUSTED
    if Verdict.UNVERIFIABLE in seen:
        return Verdict.UNVERIFIABLE
    if Verdict.TRUSTED in seen:
        return Verdict.TRUSTED
    return Verdict.NOT_APPLICABLE


class PodValidator:
    """Validates every container image of a pod and aggregates the result."""

    def __init__(self, image_validator: ImageValidator, max_workers: int = 5):
        self.image_validator = image_validator
        self.max_workers = max(1, max_workers)

    @staticmethod
    def is_resolvable(pod: V1Pod) -> bool:
        """True when the pod is scheduled and at least one image digest is known."""
        if not pod.spec or not pod.spec.node_name:
            return False
        return any(image.resolved_digest for image in pod_images(pod))

    def validate_pod(self, pod: V1Pod, cancel: Optional[CancelToken] = None) -> PodVerdict:
        meta = pod.metadata
        images = pod_images(pod)

        unique: Dict[Tuple[str, Optional[str]], None] = {}
        for image in images:
            unique.setdefault((image.image, image.resolved_digest), None)

        results = self._validate_all(list(unique), cancel)
        image_verdicts = tuple(results[(image.image, image.resolved_digest)] for image in images)
        verdict = aggregate(iv.verdict for iv in image_verdicts)

        logger.debug(f"Pod {meta.namespace}/{meta.name} validated as {verdict.value} "
                     f"({len(image_verdicts)} containers, {len(unique)} distinct images)")

        return PodVerdict(
            namespace=meta.namespace,
            name=meta.name,
            resource_version=meta.resource_version or "",
            verdict=verdict,
            images=image_verdicts,
        )

    def _validate_all(self, keys: List[Tuple[str, Optional[str]]],
                      cancel: Optional[CancelToken]) -> Dict[Tuple[str, Optional[str]], ImageVerdict]:
        results = {}
        if not keys:
            return results

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(keys))) as executor:
            future_to_key = {
                executor.submit(self.image_validator.validate_image, image, digest, cancel): (image, digest)
                for image, digest in keys
            }
            for future in as_completed(future_to_key):
                key = future_to_key[future]
                try:
                    results[key] = future.result()
                except Exception as e:
                    logger.exception(f"Validation of {key[0]} failed unexpectedly")
                    results[key] = ImageVerdict(key[0], Verdict.UNVERIFIABLE, f"unexpected error: {e}")

        return results
