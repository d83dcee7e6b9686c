import threading
from types import SimpleNamespace

import pytest
from kubernetes.client.rest import ApiException

from conftest import FakeCoreV1Api, make_pod, running
from ecr import db, kube_ops
from ecr.errors import SerializationFailure, UnitNotFound


def test_to_dict_uses_wire_field_names():
    doc = kube_ops.to_dict(make_pod({"main": running()}))
    assert doc["metadata"]["name"] == "app-1"
    assert doc["status"]["containerStatuses"][0]["name"] == "main"
    assert "ephemeralContainers" not in doc["spec"]


def test_serialize_failure_is_classified():
    with pytest.raises(SerializationFailure):
        kube_ops.serialize(object())


def test_read_missing_pod_raises_not_found():
    with pytest.raises(UnitNotFound):
        kube_ops.read_pod(FakeCoreV1Api(), "ns", "nope")


class _ListingApi:
    def __init__(self, pods):
        self.pods = pods
        self.calls = []

    def _resp(self):
        return SimpleNamespace(items=self.pods, metadata=SimpleNamespace(resource_version="42"))

    def list_pod_for_all_namespaces(self, **kwargs):
        self.calls.append(("all", kwargs))
        return self._resp()

    def list_namespaced_pod(self, **kwargs):
        self.calls.append(("ns", kwargs))
        return self._resp()


@pytest.fixture
def scripted_watch(monkeypatch):
    """Each Watch().stream() replays the next script; exceptions in a script are raised."""
    scripts = []
    calls = []

    class _Watch:
        def stream(self, func, **kwargs):
            calls.append(kwargs)
            for step in scripts.pop(0):
                if isinstance(step, Exception):
                    raise step
                yield step

        def stop(self):
            pass

    monkeypatch.setattr(kube_ops.watch, "Watch", _Watch)
    return scripts, calls


def _pod_at(name, rv):
    pod = make_pod({"main": running()}, name=name)
    pod.metadata.resource_version = rv
    return pod


def _bookmark(rv):
    return {"type": "BOOKMARK", "object": SimpleNamespace(metadata=SimpleNamespace(resource_version=rv))}


def _collect(api, syncs=1):
    """Run the watch until ``syncs`` SYNC markers were seen."""
    stop = threading.Event()
    seen = []
    for kind, obj in kube_ops.watch_pods(api, stop=stop):
        seen.append((kind, obj if kind == kube_ops.SYNC else obj.metadata.name))
        if kind == kube_ops.SYNC and sum(k == kube_ops.SYNC for k, _ in seen) == syncs:
            stop.set()
    return seen


def test_watch_starts_with_labelled_list():
    api = _ListingApi([make_pod({"main": running()}, name="a"), make_pod({"main": running()}, name="b")])

    assert _collect(api) == [("ADDED", "a"), ("ADDED", "b"), ("SYNC", {"uid-ns-a", "uid-ns-b"})]
    assert api.calls == [("all", {"label_selector": "ecr.io/essential-container"})]


def test_watch_can_be_scoped_to_namespace(configure):
    configure(namespace="jobs", essential_label="example.com/essential")
    api = _ListingApi([make_pod({"main": running()}, name="a", namespace="jobs")])

    _collect(api)
    assert api.calls == [("ns", {"label_selector": "example.com/essential", "namespace": "jobs"})]


def test_watch_resumes_skips_bookmarks_and_relists_on_gone(scripted_watch):
    scripts, calls = scripted_watch
    api = _ListingApi([make_pod({"main": running()}, name="a")])
    scripts.append([{"type": "MODIFIED", "object": _pod_at("a", "43")}, _bookmark("44")])
    scripts.append([ApiException(status=410, reason="Gone")])

    seen = _collect(api, syncs=2)

    assert [kind for kind, _ in seen] == ["ADDED", "SYNC", "MODIFIED", "ADDED", "SYNC"]
    assert [c["resource_version"] for c in calls] == ["42", "44"]
    assert all(c["allow_watch_bookmarks"] for c in calls)
    assert len(api.calls) == 2
    assert any("410 Gone" in e["message"] for e in db.latest_events())


def test_watch_errors_other_than_gone_propagate(scripted_watch):
    scripts, _ = scripted_watch
    scripts.append([ApiException(status=500, reason="Internal Server Error")])
    api = _ListingApi([])

    with pytest.raises(ApiException):
        list(kube_ops.watch_pods(api, stop=threading.Event()))


def test_watch_returns_when_stopped_mid_stream(scripted_watch):
    scripts, calls = scripted_watch
    scripts.append([{"type": "MODIFIED", "object": _pod_at("a", "43")}, {"type": "MODIFIED", "object": _pod_at("b", "44")}])
    api = _ListingApi([])
    stop = threading.Event()

    seen = []
    for kind, obj in kube_ops.watch_pods(api, stop=stop):
        seen.append(kind)
        if kind == "MODIFIED":
            stop.set()

    assert seen == ["SYNC", "MODIFIED"]
    assert len(calls) == 1
