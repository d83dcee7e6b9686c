from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterator

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from .db import log_event
from .errors import SerializationFailure, UnitNotFound, classify
from .pods import pod_uid
from .settings import settings

_serializer = client.ApiClient()


def load_config() -> None:
    """Prefer in-cluster credentials, fall back to the local kubeconfig."""
    try:
        config.load_incluster_config()
        log_event("INFO", "Loaded in-cluster config")
    except ConfigException:
        config.load_kube_config()
        log_event("INFO", "Loaded kubeconfig")


def core_api() -> client.CoreV1Api:
    return client.CoreV1Api()


def to_dict(obj: Any) -> dict[str, Any]:
    """API object -> camelCase JSON-compatible dict, as the server would see it."""
    try:
        return json.loads(serialize(obj))
    except ValueError as e:
        raise SerializationFailure(f"cannot decode serialized object: {e}") from e


def serialize(obj: Any) -> str:
    try:
        return json.dumps(_serializer.sanitize_for_serialization(obj), sort_keys=True)
    except (TypeError, ValueError, AttributeError) as e:
        raise SerializationFailure(f"cannot serialize {type(obj).__name__}: {e}") from e


def read_pod(api: client.CoreV1Api, namespace: str, name: str) -> client.V1Pod:
    try:
        return api.read_namespaced_pod(name=name, namespace=namespace)
    except Exception as e:
        raise classify(e) from e


def delete_pod(api: client.CoreV1Api, namespace: str, name: str, uid: str | None = None) -> None:
    """Delete the pod; with ``uid`` only that incarnation of it.

    A replaced pod (same name, other uid) fails the precondition with 409
    and is reported as UnitNotFound.
    """
    body = client.V1DeleteOptions(preconditions=client.V1Preconditions(uid=uid)) if uid else None
    try:
        api.delete_namespaced_pod(name=name, namespace=namespace, body=body)
    except ApiException as e:
        if uid and e.status == 409:
            raise UnitNotFound(f"pod {namespace}/{name} was replaced (uid {uid} is gone)") from e
        raise classify(e) from e
    except Exception as e:
        raise classify(e) from e


def patch_ephemeral_containers(api: client.CoreV1Api, namespace: str, name: str, patch: dict[str, Any]) -> None:
    """Submit a strategic merge patch against the pod's ephemeralcontainers subresource.

    The client sends dict bodies on PATCH as application/strategic-merge-patch+json.
    """
    try:
        api.patch_namespaced_pod_ephemeralcontainers(name=name, namespace=namespace, body=patch)
    except Exception as e:
        raise classify(e) from e


def record_event(api: client.CoreV1Api, pod: client.V1Pod, reason: str, message: str) -> None:
    """Attach a core/v1 Event to the pod so `kubectl describe` shows what happened."""
    meta = pod.metadata
    now = datetime.now(timezone.utc)
    body = client.CoreV1Event(
        metadata=client.V1ObjectMeta(generate_name=f"{meta.name}.", namespace=meta.namespace),
        involved_object=client.V1ObjectReference(
            api_version="v1", kind="Pod", name=meta.name, namespace=meta.namespace, uid=meta.uid
        ),
        reason=reason,
        message=message,
        type="Normal",
        source=client.V1EventSource(component="essential-container-reaper"),
        first_timestamp=now,
        last_timestamp=now,
        count=1,
    )
    try:
        api.create_namespaced_event(namespace=meta.namespace, body=body)
    except Exception as e:
        raise classify(e) from e


SYNC = "SYNC"


def _list(api: client.CoreV1Api):
    if settings.namespace:
        return api.list_namespaced_pod, {"namespace": settings.namespace}
    return api.list_pod_for_all_namespaces, {}


def watch_pods(api: client.CoreV1Api, stop=None) -> Iterator[tuple[str, Any]]:
    """LIST then WATCH labelled pods, yielding (event_type, pod).

    Each list is reported as ADDED events followed by one
    ("SYNC", listed_uids) marker. A 410 Gone from the watch restarts from a
    fresh list. Other errors propagate to the caller.
    """
    list_fn, kwargs = _list(api)
    selector = settings.essential_label
    while stop is None or not stop.is_set():
        resp = list_fn(label_selector=selector, **kwargs)
        for pod in resp.items:
            yield "ADDED", pod
        yield SYNC, {pod_uid(p) for p in resp.items}
        rv = resp.metadata.resource_version
        while stop is None or not stop.is_set():
            w = watch.Watch()
            try:
                for ev in w.stream(
                    list_fn,
                    label_selector=selector,
                    resource_version=rv,
                    timeout_seconds=settings.watch_timeout_s,
                    allow_watch_bookmarks=True,
                    **kwargs,
                ):
                    obj = ev.get("object")
                    et = ev.get("type")
                    if obj is None or not hasattr(obj, "metadata"):
                        continue
                    rv = obj.metadata.resource_version
                    if et == "BOOKMARK":
                        continue
                    yield et, obj
                    if stop is not None and stop.is_set():
                        return
            except ApiException as e:
                if e.status == 410:
                    log_event("WARN", "Watch expired (410 Gone), relisting")
                    break
                raise
            finally:
                w.stop()
