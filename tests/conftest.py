"""Shared builders and fakes for warden tests."""

import copy
from typing import Dict, List, Optional, Tuple

import pytest
from kubernetes import client

from warden.errors import ClusterAPIError


APP_DIGEST = "sha256:" + "a" * 64
OTHER_DIGEST = "sha256:" + "b" * 64
NGINX_DIGEST = "sha256:" + "c" * 64

APP_IMAGE = "registry.example.com/prod/app:1.0"
NGINX_IMAGE = "docker.io/library/nginx:latest"
ALLOWED = "registry.example.com/prod"


def container_status(name: str, image: str, digest: Optional[str]) -> client.V1ContainerStatus:
    repo = image.rsplit(":", 1)[0]
    return client.V1ContainerStatus(
        name=name,
        image=image,
        image_id=f"{repo}@{digest}" if digest else "",
        ready=bool(digest),
        restart_count=0,
    )


def make_pod(name: str = "app", namespace: str = "team-a",
             containers: Optional[List[Tuple[str, str, Optional[str]]]] = None,
             init_containers: Optional[List[Tuple[str, str, Optional[str]]]] = None,
             ephemeral_containers: Optional[List[Tuple[str, str, Optional[str]]]] = None,
             node_name: Optional[str] = "node-1", resource_version: str = "1",
             labels: Optional[Dict[str, str]] = None) -> client.V1Pod:
    """Build a pod from ``(container name, image, resolved digest)`` tuples."""
    containers = containers if containers is not None else [("app", APP_IMAGE, APP_DIGEST)]
    init_containers = init_containers or []
    ephemeral_containers = ephemeral_containers or []

    return client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            uid=f"uid-{namespace}-{name}",
            resource_version=resource_version,
            labels=dict(labels or {}),
            annotations={},
        ),
        spec=client.V1PodSpec(
            node_name=node_name,
            containers=[client.V1Container(name=n, image=i) for n, i, _ in containers],
            init_containers=[client.V1Container(name=n, image=i) for n, i, _ in init_containers] or None,
            ephemeral_containers=[
                client.V1EphemeralContainer(name=n, image=i) for n, i, _ in ephemeral_containers
            ] or None,
        ),
        status=client.V1PodStatus(
            container_statuses=[container_status(n, i, d) for n, i, d in containers],
            init_container_statuses=[container_status(n, i, d) for n, i, d in init_containers] or None,
            ephemeral_container_statuses=[
                container_status(n, i, d) for n, i, d in ephemeral_containers
            ] or None,
        ),
    )


def make_namespace(name: str, labels: Optional[Dict[str, str]] = None) -> client.V1Namespace:
    return client.V1Namespace(metadata=client.V1ObjectMeta(name=name, labels=dict(labels or {})))


class FakeCluster:
    """In-memory stand-in for ``ClusterClient``."""

    def __init__(self):
        self.pods: Dict[Tuple[str, str], client.V1Pod] = {}
        self.namespaces: Dict[str, client.V1Namespace] = {}
        self.patches: List[Tuple[str, str, Dict[str, str], Dict[str, str]]] = []
        self.deleted: List[Tuple[str, str]] = []
        self.evicted: List[Tuple[str, str]] = []
        self.fail_get: Optional[ClusterAPIError] = None
        self.fail_patch: Optional[ClusterAPIError] = None
        self.fail_delete: Optional[ClusterAPIError] = None
        self.fail_list: Optional[ClusterAPIError] = None

    def add_pod(self, pod: client.V1Pod) -> client.V1Pod:
        self.pods[(pod.metadata.namespace, pod.metadata.name)] = pod
        return pod

    def add_namespace(self, namespace: client.V1Namespace) -> client.V1Namespace:
        self.namespaces[namespace.metadata.name] = namespace
        return namespace

    def get_pod(self, namespace: str, name: str) -> Optional[client.V1Pod]:
        if self.fail_get:
            raise self.fail_get
        pod = self.pods.get((namespace, name))
        return copy.deepcopy(pod) if pod else None

    def list_pods(self, namespace: str) -> List[client.V1Pod]:
        if self.fail_list:
            raise self.fail_list
        return [copy.deepcopy(p) for (ns, _), p in self.pods.items() if ns == namespace]

    def patch_pod_metadata(self, namespace: str, name: str, labels: Dict[str, str],
                           annotations: Dict[str, str]) -> Optional[client.V1Pod]:
        if self.fail_patch:
            raise self.fail_patch
        pod = self.pods.get((namespace, name))
        if pod is None:
            return None
        self.patches.append((namespace, name, dict(labels), dict(annotations)))
        pod.metadata.labels = {**(pod.metadata.labels or {}), **labels}
        pod.metadata.annotations = {**(pod.metadata.annotations or {}), **annotations}
        pod.metadata.resource_version = str(int(pod.metadata.resource_version) + 1)
        return copy.deepcopy(pod)

    def delete_pod(self, namespace: str, name: str, uid: Optional[str] = None) -> bool:
        if self.fail_delete:
            raise self.fail_delete
        pod = self.pods.get((namespace, name))
        if pod is None or (uid and pod.metadata.uid != uid):
            return False
        del self.pods[(namespace, name)]
        self.deleted.append((namespace, name))
        return True

    def evict_pod(self, namespace: str, name: str) -> bool:
        if self.pods.pop((namespace, name), None) is None:
            return False
        self.evicted.append((namespace, name))
        return True

    def get_namespace(self, name: str) -> Optional[client.V1Namespace]:
        namespace = self.namespaces.get(name)
        return copy.deepcopy(namespace) if namespace else None

    def list_all_pods(self):
        return [copy.deepcopy(p) for p in self.pods.values()], "1"

    def list_all_namespaces(self):
        return [copy.deepcopy(n) for n in self.namespaces.values()], "1"

    def watch_pods(self, resource_version):
        return iter([])

    def watch_namespaces(self, resource_version):
        return iter([])


@pytest.fixture
def cluster():
    return FakeCluster()
