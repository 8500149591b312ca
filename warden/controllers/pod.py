"""Pod reconciliation: validate, record and enforce."""

import json
import logging
from typing import Optional

from kubernetes.client import V1Pod

from ..errors import ClusterAPIError, ReconcileError
from ..models.verdict import PodKey, PodVerdict, Verdict
from ..utils.cancel import CancelToken
from ..validate.pod import PodValidator
from .cache import CacheEntry, VerdictCache
from .enforcement import Enforcer
from .namespace import NamespacePolicyStore
from .queue import Result


logger = logging.getLogger(__name__)

VERDICT_LABEL = "pods.warden.kyma-project.io/validate"
DETAILS_ANNOTATION = "pods.warden.kyma-project.io/validate-details"

MAX_ENFORCE_ATTEMPTS = 5


def verdict_details(verdict: PodVerdict) -> str:
    return json.dumps([image.to_dict() for image in verdict.images], sort_keys=True, separators=(",", ":"))


class PodReconciler:
    """Drives one pod towards a recorded, enforced trust verdict.

    A pass goes through these steps:

    * the pod is gone or terminating: drop its cache entry and stop
    * its namespace has not opted in, or no image digest is known yet: stop
    * a verdict cached for the same resource version and namespace policy is
      reused, otherwise the pod validator runs
    * the verdict is written to the pod label and annotation, only if they differ
    * ``Untrusted`` pods are handed to the enforcer once; ``Unverifiable``
      pods are requeued with backoff and never enforced

    Passes for different pods may run concurrently. Passes for the same pod are
    serialized by the work queue, but each pass still assumes nothing about
    earlier ones beyond what the cache records.
    """

    def __init__(self, cluster, validator: PodValidator, policies: NamespacePolicyStore,
                 enforcer: Enforcer, cache: Optional[VerdictCache] = None,
                 max_enforce_attempts: int = MAX_ENFORCE_ATTEMPTS):
        self.cluster = cluster
        self.validator = validator
        self.policies = policies
        self.enforcer = enforcer
        self.cache = cache if cache is not None else VerdictCache()
        self.max_enforce_attempts = max_enforce_attempts

    def reconcile(self, key: PodKey, cancel: Optional[CancelToken] = None) -> Result:
        try:
            pod = self.cluster.get_pod(key.namespace, key.name)
        except ClusterAPIError as e:
            raise ReconcileError(f"Unable to read pod {key}: {e}") from e

        if pod is None:
            if self.cache.evict(key):
                logger.debug(f"Pod {key} deleted, verdict evicted")
            return Result()
        if pod.metadata.deletion_timestamp is not None:
            return Result()

        policy = self.policies.get(key.namespace)
        if not policy.enabled:
            return Result()
        if not self.validator.is_resolvable(pod):
            logger.debug(f"Pod {key} has no resolvable images yet, skipping")
            return Result()

        entry = self.cache.get(key, pod.metadata.resource_version, policy.generation)
        if entry is not None:
            verdict = entry.verdict
        else:
            verdict = self.validator.validate_pod(pod, cancel=cancel)
            if cancel is not None and cancel.cancelled:
                logger.info(f"Validation of pod {key} cancelled, discarding verdict")
                return Result()
            logger.info(f"Pod {key} verdict: {verdict.verdict.value}")

        recorded = self._record(pod, verdict)
        if recorded is None:
            self.cache.evict(key)
            return Result()

        if verdict.verdict == Verdict.UNVERIFIABLE:
            self.cache.evict(key)
            logger.info(f"Pod {key} could not be verified, retrying later")
            return Result(requeue=True)

        if entry is None or entry.resource_version != recorded.metadata.resource_version:
            entry = CacheEntry(
                resource_version=recorded.metadata.resource_version,
                policy_generation=policy.generation,
                verdict=verdict,
                enforced=entry.enforced if entry else False,
                enforce_attempts=entry.enforce_attempts if entry else 0,
            )
            self.cache.put(key, entry)

        if verdict.verdict == Verdict.UNTRUSTED:
            self._enforce(key, recorded, entry)
        return Result()

    def _record(self, pod: V1Pod, verdict: PodVerdict) -> Optional[V1Pod]:
        """Write the verdict onto the pod. Returns the current pod, or None if it is gone."""
        meta = pod.metadata
        labels = meta.labels or {}
        annotations = meta.annotations or {}
        details = verdict_details(verdict)

        if labels.get(VERDICT_LABEL) == verdict.verdict.value and annotations.get(DETAILS_ANNOTATION) == details:
            return pod

        try:
            updated = self.cluster.patch_pod_metadata(
                meta.namespace, meta.name,
                labels={VERDICT_LABEL: verdict.verdict.value},
                annotations={DETAILS_ANNOTATION: details},
            )
        except ClusterAPIError as e:
            raise ReconcileError(f"Unable to record verdict on pod {meta.namespace}/{meta.name}: {e}") from e
        return updated

    def _enforce(self, key: PodKey, pod: V1Pod, entry: CacheEntry):
        if entry.enforced:
            return
        if entry.enforce_attempts >= self.max_enforce_attempts:
            logger.error(f"Giving up enforcing on pod {key} after {entry.enforce_attempts} attempts")
            return

        try:
            self.enforcer.enforce(pod)
        except ClusterAPIError as e:
            self.cache.update(key, enforce_attempts=entry.enforce_attempts + 1)
            raise ReconcileError(f"Unable to enforce on untrusted pod {key}: {e}") from e
        self.cache.update(key, enforced=True, enforce_attempts=entry.enforce_attempts + 1)
