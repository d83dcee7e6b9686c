from __future__ import annotations

from threading import Event, Thread

from kubernetes import client

from . import actions, db, kube_ops
from .actions import RemedialAction
from .errors import Cancelled, UnitNotFound, classify
from .pods import essential_container_name, is_completion_event, is_stranded, pod_key, pod_uid
from .runtime import ACTING, EVALUATING, IDLE, RuntimeState
from .settings import settings
from .workqueue import WorkQueue

CREATE = "create"
UPDATE = "update"
DELETE = "delete"


class Reconciler:
    """Ends pods whose essential container completed while sidecars keep running.

    A watch thread turns pod notifications into (old, new) pairs and wakes
    the loop only for completion edges. Worker threads then apply the
    configured remedial action, re-queueing retryable failures with backoff.
    """

    def __init__(
        self,
        api: client.CoreV1Api,
        action: RemedialAction,
        runtime: RuntimeState | None = None,
        workers: int | None = None,
    ):
        self.api = api
        self.action = action
        self.runtime = runtime or RuntimeState()
        self.workers = max(1, int(workers or settings.workers))
        self.queue = WorkQueue(settings.backoff_base_ms / 1000.0, settings.backoff_max_s)
        self._stop = Event()
        self._threads: list[Thread] = []

    def start(self) -> None:
        if any(t.is_alive() for t in self._threads):
            return
        self._stop.clear()
        self._threads = [Thread(target=self._watch_loop, name="ecr-watch", daemon=True)]
        for i in range(self.workers):
            self._threads.append(Thread(target=self._work, name=f"ecr-worker-{i}", daemon=True))
        for t in self._threads:
            t.start()
        db.log_event("INFO", f"Reconciler started (action={self.action.value}, workers={self.workers})")

    def stop(self) -> None:
        self._stop.set()
        self.queue.shut_down()

    def _watch_loop(self) -> None:
        while not self._stop.is_set():
            try:
                for kind, pod in kube_ops.watch_pods(self.api, stop=self._stop):
                    self.observe(kind, pod)
            except Exception as e:
                db.log_event("ERROR", f"Pod watch failed: {type(e).__name__}: {e}")
            self._stop.wait(2)

    def _work(self) -> None:
        while not self._stop.is_set():
            self.process_next(timeout=1.0)

    # -- notifications -----------------------------------------------------

    def observe(self, event_type: str, pod) -> bool:
        """Feed one watch event; pairs it with the previous snapshot of the pod.

        A pod already cached is compared against its cached copy even when a
        relist reports it as ADDED. A SYNC marker carries the uids of a full
        list and drops everything not in it.
        """
        if event_type == kube_ops.SYNC:
            self.resync(pod)
            return False
        uid = pod_uid(pod)
        if event_type == "DELETED":
            self.runtime.drop_snapshot(uid)
            return self.handle_event(DELETE, None, pod)
        old = self.runtime.swap_snapshot(uid, pod)
        if old is None:
            return self.handle_event(CREATE, None, pod)
        return self.handle_event(UPDATE, old, pod)

    def resync(self, listed_uids: set[str]) -> int:
        """Forget pods that vanished while the watch was not running."""
        dropped = self.runtime.prune_snapshots(listed_uids)
        for pod in dropped:
            key = pod_key(pod)
            if self.runtime.get_state(key) != ACTING:
                self.runtime.forget_unit(key)
        if dropped:
            db.log_event("INFO", f"Relist dropped {len(dropped)} vanished pod(s)")
        return len(dropped)

    def handle_event(self, kind: str, old: client.V1Pod | None, new: client.V1Pod) -> bool:
        """Decide whether the notification wakes the loop. Returns True if queued."""
        key = pod_key(new)
        if kind == DELETE:
            if self.runtime.get_state(key) != ACTING:
                self.runtime.forget_unit(key)
            return False
        if self.runtime.get_state(key) == ACTING:
            return False

        essential = essential_container_name(new, settings.essential_label, settings.default_essential)
        self.runtime.set_state(key, EVALUATING, essential=essential)
        if kind == CREATE:
            wake = settings.act_on_first_observation and is_stranded(new, essential)
        else:
            wake = is_completion_event(old, new, essential)

        if not wake:
            self.runtime.forget_unit(key)
            return False

        self.runtime.bump("completions")
        db.log_event(
            "INFO",
            f"Essential container '{essential}' completed, queueing {self.action.value}",
            namespace=new.metadata.namespace,
            pod=new.metadata.name,
        )
        self.runtime.set_state(key, ACTING, uid=new.metadata.uid or "")
        self.queue.add(key)
        return True

    # -- reconciliation ----------------------------------------------------

    def process_next(self, timeout: float | None = None) -> bool:
        """Reconcile one queued pod. Returns False if nothing was available."""
        key = self.queue.get(timeout)
        if key is None:
            return False
        try:
            self._process(key)
        finally:
            self.queue.done(key)
        return True

    def _process(self, key: str) -> None:
        namespace, name = key.split("/", 1)
        try:
            outcome = self.reconcile(key)
        except Exception as e:
            err = classify(e)
            detail = f"{type(err).__name__}: {err}"
            if not err.retryable:
                self.queue.forget(key)
                self.runtime.bump("failed")
                self.runtime.set_state(key, IDLE, outcome="failed")
                db.log_event("ERROR", f"{self.action.value} failed, giving up: {detail}", namespace=namespace, pod=name)
            elif self.queue.shutting_down:
                self.runtime.set_state(key, ACTING, outcome="cancelled")
                db.log_event("WARN", f"{self.action.value} interrupted by shutdown: {detail}", namespace=namespace, pod=name)
            else:
                delay = self.queue.add_rate_limited(key)
                self.runtime.bump("retries")
                self.runtime.set_state(key, ACTING, outcome="retry")
                db.log_event(
                    "WARN", f"{self.action.value} failed, retrying in {delay:.3f}s: {detail}", namespace=namespace, pod=name
                )
            return

        self.queue.forget(key)
        self.runtime.bump(outcome)
        self.runtime.set_state(key, IDLE, outcome=outcome)

    def reconcile(self, key: str) -> str:
        namespace, name = key.split("/", 1)
        if self._stop.is_set():
            raise Cancelled("reconciler is shutting down")
        try:
            pod = kube_ops.read_pod(self.api, namespace, name)
        except UnitNotFound:
            db.log_event("INFO", "Pod not found", namespace=namespace, pod=name)
            db.record_action(namespace, name, self.action.value, "gone", "pod not found")
            return "gone"
        expected = self.runtime.expected_uid(key)
        if expected and pod.metadata.uid != expected:
            db.log_event("INFO", f"Pod was recreated (uid {pod.metadata.uid}), skipping", namespace=namespace, pod=name)
            db.record_action(namespace, name, self.action.value, "gone", f"replaced, expected uid {expected}")
            return "gone"
        return actions.perform(self.action, self.api, pod)


def build_reconciler(api: client.CoreV1Api | None = None) -> Reconciler:
    return Reconciler(api or kube_ops.core_api(), RemedialAction.parse(settings.action))
