import dataclasses
import importlib
import os as _os
import sys

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

# Ensure project root is importable (so `import main` works without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from ecr import db  # noqa: E402
from ecr.kube_ops import to_dict  # noqa: E402
from ecr.patch import apply_strategic_merge_patch  # noqa: E402
from ecr.pods import pod_key  # noqa: E402
from ecr.settings import Settings  # noqa: E402

LABEL = "ecr.io/essential-container"

_SETTINGS_USERS = ["ecr.db", "ecr.actions", "ecr.alerts", "ecr.kube_ops", "ecr.reconciler", "main"]


@pytest.fixture
def configure(monkeypatch, tmp_path):
    """Swap the process-wide settings for every module that reads them."""

    def _configure(**overrides):
        overrides.setdefault("db_path", str(tmp_path / "ecr.db"))
        overrides.setdefault("enable_email", False)
        new = dataclasses.replace(Settings(), **overrides)
        for name in _SETTINGS_USERS:
            monkeypatch.setattr(importlib.import_module(name), "settings", new)
        return new

    return _configure


@pytest.fixture(autouse=True)
def isolated_db(configure):
    """Every test gets its own sqlite file."""
    configure()
    db.init_db()


def running():
    return client.V1ContainerState(running=client.V1ContainerStateRunning())


def waiting(reason="ContainerCreating"):
    return client.V1ContainerState(waiting=client.V1ContainerStateWaiting(reason=reason))


def terminated(reason="Completed", exit_code=0):
    return client.V1ContainerState(
        terminated=client.V1ContainerStateTerminated(reason=reason, exit_code=exit_code)
    )


def make_pod(states, name="app-1", namespace="ns", essential="main", ephemeral=None, uid=None):
    """Build a pod whose container statuses follow ``states`` (name -> V1ContainerState or None)."""
    labels = {LABEL: essential} if essential is not None else {}
    statuses = [
        client.V1ContainerStatus(
            name=c, image=f"{c}:latest", image_id="", ready=st is not None and st.running is not None,
            restart_count=0, state=st,
        )
        for c, st in states.items()
        if st is not None
    ]
    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=client.V1ObjectMeta(
            name=name, namespace=namespace, uid=uid or f"uid-{namespace}-{name}", labels=labels, resource_version="1"
        ),
        spec=client.V1PodSpec(
            containers=[client.V1Container(name=c, image=f"{c}:latest") for c in states],
            ephemeral_containers=ephemeral,
        ),
        status=client.V1PodStatus(phase="Running", container_statuses=statuses),
    )


def not_found():
    return ApiException(status=404, reason="Not Found")


class FakeCoreV1Api:
    """In-memory stand-in for the CoreV1Api calls the reaper makes."""

    def __init__(self, *pods):
        self.pods = {pod_key(p): p for p in pods}
        self.deleted = []
        self.delete_bodies = []
        self.patches = []
        self.events = []
        self.failures = {}  # method name -> exceptions raised on successive calls

    def fail_next(self, method, *errors):
        self.failures.setdefault(method, []).extend(errors)

    def _maybe_fail(self, method):
        errs = self.failures.get(method)
        if errs:
            raise errs.pop(0)

    def _get(self, namespace, name):
        key = f"{namespace}/{name}"
        if key not in self.pods:
            raise not_found()
        return key

    def read_namespaced_pod(self, name, namespace):
        self._maybe_fail("read_namespaced_pod")
        return self.pods[self._get(namespace, name)]

    def delete_namespaced_pod(self, name, namespace, body=None):
        self._maybe_fail("delete_namespaced_pod")
        key = self._get(namespace, name)
        self.delete_bodies.append(body)
        pre = body.preconditions if body is not None else None
        if pre is not None and pre.uid and pre.uid != self.pods[key].metadata.uid:
            raise ApiException(status=409, reason="Conflict")
        del self.pods[key]
        self.deleted.append(key)

    def patch_namespaced_pod_ephemeralcontainers(self, name, namespace, body):
        self._maybe_fail("patch_namespaced_pod_ephemeralcontainers")
        key = self._get(namespace, name)
        self.patches.append((key, body))
        pod = self.pods[key]
        doc = apply_strategic_merge_patch(to_dict(pod), body)
        pod.spec.ephemeral_containers = [
            client.V1EphemeralContainer(name=ec["name"], image=ec.get("image"), command=ec.get("command"), args=ec.get("args"))
            for ec in doc["spec"].get("ephemeralContainers", [])
        ]

    def create_namespaced_event(self, namespace, body):
        self._maybe_fail("create_namespaced_event")
        self.events.append((namespace, body))
