"""Actions taken against pods found untrusted."""

import logging

from kubernetes.client import V1Pod

from ..errors import ConfigError


logger = logging.getLogger(__name__)


class Enforcer:
    """Removes or flags an untrusted pod.

    ``enforce`` returns True when the action was applied and False when the
    pod was already gone. Cluster API failures propagate as ``ClusterAPIError``.
    """

    action = "none"

    def enforce(self, pod: V1Pod) -> bool:
        raise NotImplementedError


class DeletePodEnforcer(Enforcer):
    """Deletes the pod, guarded by its UID so a recreated pod is not hit."""

    action = "delete"

    def __init__(self, cluster):
        self.cluster = cluster

    def enforce(self, pod: V1Pod) -> bool:
        meta = pod.metadata
        deleted = self.cluster.delete_pod(meta.namespace, meta.name, uid=meta.uid)
        if deleted:
            logger.warning(f"Deleted untrusted pod {meta.namespace}/{meta.name}")
        return deleted


class EvictPodEnforcer(Enforcer):
    """Evicts the pod, honouring its disruption budget."""

    action = "evict"

    def __init__(self, cluster):
        self.cluster = cluster

    def enforce(self, pod: V1Pod) -> bool:
        meta = pod.metadata
        evicted = self.cluster.evict_pod(meta.namespace, meta.name)
        if evicted:
            logger.warning(f"Evicted untrusted pod {meta.namespace}/{meta.name}")
        return evicted


class AuditOnlyEnforcer(Enforcer):
    """Leaves the pod running; the recorded label is the only outcome."""

    action = "audit"

    def enforce(self, pod: V1Pod) -> bool:
        meta = pod.metadata
        logger.warning(f"Untrusted pod {meta.namespace}/{meta.name} left running (audit mode)")
        return True


def build_enforcer(action: str, cluster) -> Enforcer:
    if action == DeletePodEnforcer.action:
        return DeletePodEnforcer(cluster)
    if action == EvictPodEnforcer.action:
        return EvictPodEnforcer(cluster)
    if action == AuditOnlyEnforcer.action:
        return AuditOnlyEnforcer()
    raise ConfigError(f"Unknown enforcement action '{action}', expected delete, evict or audit")
