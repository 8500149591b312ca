"""Access to pod and namespace objects through the Kubernetes API."""

from typing import Any, Dict, Iterator, List, Optional, Tuple

from kubernetes import client, config, watch
from kubernetes.client import ApiException

from ..errors import ClusterAPIError, ConfigError


def load_kube_config():
    """Try in-cluster configuration first, then the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        try:
            config.load_kube_config()
        except (config.ConfigException, OSError) as e:
            raise ConfigError(f"Unable to load Kubernetes configuration: {e}") from e


def _api_error(action: str, e: ApiException) -> ClusterAPIError:
    return ClusterAPIError(f"Failed to {action}: {e.status} {e.reason}", status=e.status)


class ClusterClient:
    """Thin wrapper over ``CoreV1Api`` exposing the calls warden relies on.

    Reads return ``None`` when the object does not exist. Every other API
    failure is raised as ``ClusterAPIError``.
    """

    def __init__(self, core: Optional[client.CoreV1Api] = None, watch_timeout: int = 300):
        self.core = core or client.CoreV1Api()
        self.watch_timeout = watch_timeout

    def get_pod(self, namespace: str, name: str) -> Optional[client.V1Pod]:
        try:
            return self.core.read_namespaced_pod(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise _api_error(f"read pod {namespace}/{name}", e) from e

    def list_pods(self, namespace: str) -> List[client.V1Pod]:
        try:
            return self.core.list_namespaced_pod(namespace).items
        except ApiException as e:
            raise _api_error(f"list pods in {namespace}", e) from e

    def patch_pod_metadata(self, namespace: str, name: str, labels: Dict[str, str],
                           annotations: Dict[str, str]) -> Optional[client.V1Pod]:
        """Merge labels and annotations into the pod. Returns None if it is gone."""
        body = {"metadata": {"labels": labels, "annotations": annotations}}
        try:
            return self.core.patch_namespaced_pod(name, namespace, body)
        except ApiException as e:
            if e.status == 404:
                return None
            raise _api_error(f"patch pod {namespace}/{name}", e) from e

    def delete_pod(self, namespace: str, name: str, uid: Optional[str] = None) -> bool:
        """Delete the pod. Returns False if it no longer exists."""
        options = client.V1DeleteOptions(
            preconditions=client.V1Preconditions(uid=uid) if uid else None
        )
        try:
            self.core.delete_namespaced_pod(name, namespace, body=options)
            return True
        except ApiException as e:
            if e.status in (404, 409):
                return False
            raise _api_error(f"delete pod {namespace}/{name}", e) from e

    def evict_pod(self, namespace: str, name: str) -> bool:
        """Evict the pod through the Eviction API. Returns False if it no longer exists."""
        eviction = client.V1Eviction(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace)
        )
        try:
            self.core.create_namespaced_pod_eviction(name, namespace, eviction)
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise _api_error(f"evict pod {namespace}/{name}", e) from e

    def get_namespace(self, name: str) -> Optional[client.V1Namespace]:
        try:
            return self.core.read_namespace(name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise _api_error(f"read namespace {name}", e) from e

    def list_all_pods(self) -> Tuple[List[client.V1Pod], str]:
        result = self.core.list_pod_for_all_namespaces()
        return result.items, result.metadata.resource_version

    def list_all_namespaces(self) -> Tuple[List[client.V1Namespace], str]:
        result = self.core.list_namespace()
        return result.items, result.metadata.resource_version

    def watch_pods(self, resource_version: str) -> Iterator[Dict[str, Any]]:
        return watch.Watch().stream(
            self.core.list_pod_for_all_namespaces,
            resource_version=resource_version,
            timeout_seconds=self.watch_timeout,
        )

    def watch_namespaces(self, resource_version: str) -> Iterator[Dict[str, Any]]:
        return watch.Watch().stream(
            self.core.list_namespace,
            resource_version=resource_version,
            timeout_seconds=self.watch_timeout,
        )
