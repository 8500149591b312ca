"""Namespace opt-in tracking."""

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from kubernetes.client import V1Namespace

from ..errors import ClusterAPIError, ReconcileError
from ..utils.cancel import CancelToken
from .queue import Result


logger = logging.getLogger(__name__)

VALIDATE_LABEL = "namespaces.warden.kyma-project.io/validate"
ENABLED_VALUES = {"enabled", "true"}


@dataclass(frozen=True)
class NamespacePolicy:
    """Whether pods in a namespace are validated.

    ``generation`` changes every time the flag flips, so verdicts computed
    under an earlier policy are not reused.
    """
    enabled: bool = False
    generation: int = 0


def validation_enabled(namespace: V1Namespace) -> bool:
    labels = (namespace.metadata.labels or {}) if namespace.metadata else {}
    return labels.get(VALIDATE_LABEL, "").strip().lower() in ENABLED_VALUES


class NamespacePolicyStore:
    """Per-namespace policy, written by the namespace reconciler only."""

    def __init__(self):
        self._lock = threading.Lock()
        self._policies: Dict[str, NamespacePolicy] = {}
        self._generations = itertools.count(1)

    def get(self, namespace: str) -> NamespacePolicy:
        with self._lock:
            return self._policies.get(namespace, NamespacePolicy())

    def set(self, namespace: str, enabled: bool) -> bool:
        """Publish the flag. Returns True if the effective policy changed."""
        with self._lock:
            current = self._policies.get(namespace, NamespacePolicy())
            if namespace in self._policies and current.enabled == enabled:
                return False
            self._policies[namespace] = NamespacePolicy(enabled, next(self._generations))
            return current.enabled != enabled

    def remove(self, namespace: str) -> bool:
        """Drop the entry. Returns True if validation was enabled before."""
        with self._lock:
            policy = self._policies.pop(namespace, None)
        return policy is not None and policy.enabled


class NamespaceReconciler:
    """Keeps the policy store in line with the namespace opt-in label.

    When the effective flag of a namespace changes, ``on_change`` is called
    with the namespace name so its pods get reconciled again.
    """

    def __init__(self, cluster, policies: NamespacePolicyStore,
                 on_change: Optional[Callable[[str], None]] = None):
        self.cluster = cluster
        self.policies = policies
        self.on_change = on_change
        self._pending_requeue = set()
        self._lock = threading.Lock()

    def reconcile(self, name: str, cancel: Optional[CancelToken] = None) -> Result:
        try:
            namespace = self.cluster.get_namespace(name)
        except ClusterAPIError as e:
            raise ReconcileError(f"Unable to read namespace {name}: {e}") from e

        if namespace is None:
            if self.policies.remove(name):
                logger.info(f"Namespace {name} deleted, validation policy removed")
            return Result()

        enabled = validation_enabled(namespace)
        changed = self.policies.set(name, enabled)
        if changed:
            logger.info(f"Validation {'enabled' if enabled else 'disabled'} for namespace {name}")
        with self._lock:
            pending = name in self._pending_requeue
            self._pending_requeue.discard(name)
        if not (changed or pending) or self.on_change is None:
            return Result()

        try:
            self.on_change(name)
        except ClusterAPIError as e:
            with self._lock:
                self._pending_requeue.add(name)
            raise ReconcileError(f"Unable to requeue pods of namespace {name}: {e}") from e
        return Result()
