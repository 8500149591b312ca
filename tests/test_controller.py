import threading

from kubernetes.client import ApiException

from warden.controllers.manager import Controller, Manager, pod_key
from warden.controllers.namespace import NamespacePolicyStore, NamespaceReconciler
from warden.controllers.queue import ExponentialBackoff, Result, WorkQueue
from warden.errors import ReconcileError
from warden.models.verdict import PodKey

from conftest import make_pod


def build_controller(reconcile, **kwargs):
    return Controller(
        "test",
        reconcile=reconcile,
        list_fn=lambda: ([], "1"),
        watch_fn=lambda rv: iter([]),
        key_fn=pod_key,
        queue=WorkQueue(ExponentialBackoff(base_delay=10.0, max_delay=60.0)),
        **kwargs,
    )


def test_successful_reconcile_forgets_backoff():
    controller = build_controller(lambda key, cancel: Result())
    controller.queue.backoff.when("a")
    controller.enqueue("a")

    assert controller.process_next(timeout=1)
    assert controller.queue.num_requeues("a") == 0
    assert controller.queue.pending_delayed() == 0


def test_requeue_result_backs_off():
    controller = build_controller(lambda key, cancel: Result(requeue=True))
    controller.enqueue("a")

    controller.process_next(timeout=1)

    assert controller.queue.num_requeues("a") == 1
    assert controller.queue.pending_delayed() == 1
    assert len(controller.queue) == 0


def test_reconcile_error_backs_off():
    def reconcile(key, cancel):
        raise ReconcileError("api down")

    controller = build_controller(reconcile)
    controller.enqueue("a")
    controller.process_next(timeout=1)

    assert controller.queue.num_requeues("a") == 1


def test_unexpected_error_does_not_kill_worker():
    def reconcile(key, cancel):
        raise KeyError("bug")

    controller = build_controller(reconcile)
    controller.enqueue("a")
    assert controller.process_next(timeout=1)
    assert controller.queue.num_requeues("a") == 1


def test_requeued_key_ignores_events_until_backoff_expires():
    def reconcile(key, cancel):
        # the label write of this pass comes back as a watch event
        controller.enqueue(key)
        return Result(requeue=True)

    controller = build_controller(reconcile)
    controller.enqueue("a")
    controller.process_next(timeout=1)

    assert len(controller.queue) == 0
    controller.enqueue("a")
    assert len(controller.queue) == 0
    assert controller.queue.pending_delayed() == 1
    assert not controller.process_next(timeout=0.05)


def test_deleted_event_cancels_in_flight_reconcile():
    started = threading.Event()
    seen = {}

    def reconcile(key, cancel):
        started.set()
        seen["cancelled"] = cancel
        for _ in range(100):
            if cancel.cancelled:
                break
            threading.Event().wait(0.01)
        return Result()

    controller = build_controller(reconcile)
    pod = make_pod()
    controller.enqueue(pod_key(pod))
    worker = threading.Thread(target=controller.process_next, kwargs={"timeout": 1})
    worker.start()
    started.wait(1)

    controller.handle_event({"type": "DELETED", "object": pod})
    worker.join(2)

    assert seen["cancelled"].cancelled
    assert controller.queue.get(timeout=1) == PodKey("team-a", "app")


def test_handle_event_returns_resource_version():
    controller = build_controller(lambda key, cancel: Result())
    pod = make_pod(resource_version="42")

    assert controller.handle_event({"type": "MODIFIED", "object": pod}) == "42"
    assert controller.handle_event({"type": "ERROR", "object": None}) is None
    assert len(controller.queue) == 1


def test_watch_loop_relists_after_gone():
    lists = []
    stop = threading.Event()

    def list_fn():
        lists.append(1)
        if len(lists) >= 2:
            stop.set()
        return [make_pod()], "1"

    def watch_fn(rv):
        if stop.is_set():
            controller._stop.set()
            return iter([])
        raise ApiException(status=410, reason="Gone")

    controller = Controller("test", reconcile=lambda k, c: Result(), list_fn=list_fn,
                            watch_fn=watch_fn, key_fn=pod_key)
    controller._watch_loop()

    assert len(lists) == 2
    assert len(controller.queue) == 1


def test_namespace_change_requeues_its_pods(cluster):
    cluster.add_pod(make_pod(name="a", namespace="team-a"))
    cluster.add_pod(make_pod(name="b", namespace="team-a"))
    cluster.add_pod(make_pod(name="c", namespace="team-b"))
    namespace_reconciler = NamespaceReconciler(cluster, NamespacePolicyStore())

    class NoopPods:
        def reconcile(self, key, cancel=None):
            return Result()

    manager = Manager(cluster, NoopPods(), namespace_reconciler)
    assert namespace_reconciler.on_change == manager.requeue_namespace

    manager.requeue_namespace("team-a")

    keys = {manager.pods.queue.get(timeout=1), manager.pods.queue.get(timeout=1)}
    assert keys == {PodKey("team-a", "a"), PodKey("team-a", "b")}
    assert len(manager.pods.queue) == 0
