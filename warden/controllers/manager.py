"""Watch loops and worker threads that drive the reconcilers."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional, Tuple

from kubernetes.client import ApiException

from ..errors import ReconcileError
from ..models.verdict import PodKey
from ..utils.cancel import CancelToken
from .queue import ExponentialBackoff, Result, WorkQueue


logger = logging.getLogger(__name__)

WATCH_RETRY_DELAY = 5.0


class Controller:
    """Feeds keys from a list/watch source to a reconcile function.

    ``workers`` threads pull keys from a shared ``WorkQueue``. A failed or
    requeued reconcile is retried with exponential backoff. When the watch
    reports an object as deleted, the in-flight reconcile for its key (if
    any) is cancelled.
    """

    def __init__(self, name: str,
                 reconcile: Callable[[Hashable, CancelToken], Result],
                 list_fn: Callable[[], Tuple[List[Any], str]],
                 watch_fn: Callable[[str], Iterator[Dict[str, Any]]],
                 key_fn: Callable[[Any], Hashable],
                 workers: int = 4,
                 queue: Optional[WorkQueue] = None,
                 resync_period: float = 600.0):
        self.name = name
        self.reconcile = reconcile
        self.list_fn = list_fn
        self.watch_fn = watch_fn
        self.key_fn = key_fn
        self.workers = max(1, workers)
        self.queue = queue or WorkQueue()
        self.resync_period = resync_period

        self._stop = threading.Event()
        self._inflight: Dict[Hashable, CancelToken] = {}
        self._inflight_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._watcher: Optional[threading.Thread] = None

    def enqueue(self, key: Hashable):
        self.queue.add(key)

    def cancel(self, key: Hashable):
        with self._inflight_lock:
            token = self._inflight.get(key)
        if token is not None:
            logger.info(f"[{self.name}] cancelling in-flight reconcile of {key}")
            token.cancel()

    def start(self):
        logger.info(f"Starting {self.name} controller with {self.workers} workers")
        self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix=self.name)
        for _ in range(self.workers):
            self._executor.submit(self._worker)
        self._watcher = threading.Thread(target=self._watch_loop, name=f"{self.name}-watch", daemon=True)
        self._watcher.start()

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        self.queue.shutdown()
        with self._inflight_lock:
            tokens = list(self._inflight.values())
        for token in tokens:
            token.cancel()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        if self._watcher is not None:
            self._watcher.join(timeout)
        logger.info(f"Stopped {self.name} controller")

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Reconcile one key. Returns False when the queue is shut down or empty."""
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False

        token = CancelToken()
        with self._inflight_lock:
            self._inflight[key] = token
        try:
            result = self.reconcile(key, token)
        except ReconcileError as e:
            logger.error(f"[{self.name}] reconcile of {key} failed: {e}")
            self.queue.add_rate_limited(key)
        except Exception:
            logger.exception(f"[{self.name}] unexpected error reconciling {key}")
            self.queue.add_rate_limited(key)
        else:
            if result.requeue:
                self.queue.add_rate_limited(key)
            else:
                self.queue.forget(key)
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)
            self.queue.done(key)
        return True

    def _worker(self):
        while not self._stop.is_set():
            if not self.process_next():
                if self.queue.is_shutdown:
                    return

    def _list(self) -> str:
        items, resource_version = self.list_fn()
        for item in items:
            self.enqueue(self.key_fn(item))
        logger.debug(f"[{self.name}] listed {len(items)} objects at resource version {resource_version}")
        return resource_version

    def handle_event(self, event: Dict[str, Any]) -> Optional[str]:
        """Queue the key of a watch event. Returns the event's resource version."""
        event_type = event.get("type")
        obj = event.get("object")
        if event_type == "ERROR" or obj is None or getattr(obj, "metadata", None) is None:
            return None
        key = self.key_fn(obj)
        if event_type == "DELETED":
            self.cancel(key)
        self.enqueue(key)
        return obj.metadata.resource_version

    def _watch_loop(self):
        resource_version = None
        last_list = 0.0
        while not self._stop.is_set():
            try:
                if resource_version is None or time.monotonic() - last_list >= self.resync_period:
                    resource_version = self._list()
                    last_list = time.monotonic()
                for event in self.watch_fn(resource_version):
                    if self._stop.is_set():
                        return
                    if event.get("type") == "ERROR":
                        # the watch window expired; start over from a fresh list
                        resource_version = None
                        break
                    resource_version = self.handle_event(event) or resource_version
            except ApiException as e:
                if e.status == 410:
                    resource_version = None
                    continue
                logger.error(f"[{self.name}] watch failed: {e.status} {e.reason}")
                resource_version = None
                self._stop.wait(WATCH_RETRY_DELAY)
            except Exception:
                logger.exception(f"[{self.name}] watch failed")
                resource_version = None
                self._stop.wait(WATCH_RETRY_DELAY)


def pod_key(pod) -> PodKey:
    return PodKey(pod.metadata.namespace, pod.metadata.name)


def namespace_key(namespace) -> str:
    return namespace.metadata.name


class Manager:
    """Runs the namespace and pod controllers side by side."""

    def __init__(self, cluster, pod_reconciler, namespace_reconciler,
                 workers: int = 4, backoff_base: float = 1.0, backoff_max: float = 300.0,
                 resync_period: float = 600.0):
        self.cluster = cluster
        self.pods = Controller(
            "pods",
            reconcile=pod_reconciler.reconcile,
            list_fn=cluster.list_all_pods,
            watch_fn=cluster.watch_pods,
            key_fn=pod_key,
            workers=workers,
            queue=WorkQueue(ExponentialBackoff(backoff_base, backoff_max)),
            resync_period=resync_period,
        )
        self.namespaces = Controller(
            "namespaces",
            reconcile=namespace_reconciler.reconcile,
            list_fn=cluster.list_all_namespaces,
            watch_fn=cluster.watch_namespaces,
            key_fn=namespace_key,
            workers=workers,
            queue=WorkQueue(ExponentialBackoff(backoff_base, backoff_max)),
            resync_period=resync_period,
        )
        namespace_reconciler.on_change = self.requeue_namespace
        self._stopped = threading.Event()

    def requeue_namespace(self, namespace: str):
        """Queue every pod of a namespace whose validation policy changed."""
        pods = self.cluster.list_pods(namespace)
        for pod in pods:
            self.pods.enqueue(pod_key(pod))
        logger.info(f"Requeued {len(pods)} pods of namespace {namespace}")

    def start(self):
        self.namespaces.start()
        self.pods.start()

    def stop(self):
        self._stopped.set()
        self.pods.stop()
        self.namespaces.stop()

    def run(self):
        """Start both controllers and block until ``stop`` is called."""
        self.start()
        try:
            self._stopped.wait()
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
            self.stop()
