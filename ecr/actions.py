from __future__ import annotations

import copy
import json
from enum import Enum

from kubernetes import client

from . import db, kube_ops
from .alerts import notify_action
from .errors import ReaperError, SerializationFailure, UnitNotFound
from .patch import create_two_way_merge_patch
from .settings import settings


class RemedialAction(str, Enum):
    DELETE = "delete"
    INJECT_KILL = "inject-kill"

    @classmethod
    def parse(cls, raw: str) -> "RemedialAction":
        try:
            return cls(raw.strip().lower())
        except ValueError:
            choices = ", ".join(a.value for a in cls)
            raise ValueError(f"Unknown remedial action {raw!r} (expected one of: {choices})") from None


def helper_container(name: str | None = None, image: str | None = None, signal: str | None = None) -> client.V1EphemeralContainer:
    """Short-lived container that signals PID 1 of the pod's process namespace."""
    return client.V1EphemeralContainer(
        name=name or settings.helper_name,
        image=image or settings.helper_image,
        command=["/bin/sh"],
        args=["-c", f"kill -{signal or settings.kill_signal} 1"],
        tty=False,
        stdin=False,
        resources=client.V1ResourceRequirements(),
        security_context=client.V1SecurityContext(
            capabilities=client.V1Capabilities(add=["SYS_PTRACE"]),
        ),
    )


def remove_unit(api: client.CoreV1Api, namespace: str, name: str, uid: str | None = None) -> bool:
    """Delete the pod. Returns False when it was already gone or replaced."""
    try:
        kube_ops.delete_pod(api, namespace, name, uid=uid)
    except UnitNotFound:
        db.log_event("INFO", "Pod already deleted", namespace=namespace, pod=name)
        return False
    db.log_event("INFO", "Pod deleted", namespace=namespace, pod=name)
    return True


def _decode(raw: str) -> dict:
    try:
        return json.loads(raw)
    except ValueError as e:
        raise SerializationFailure(str(e)) from e


def inject_kill(api: client.CoreV1Api, pod: client.V1Pod, helper: client.V1EphemeralContainer | None = None) -> bool:
    """Patch a kill helper into the running pod's ephemeral containers.

    Returns False without touching the server when the helper is already
    present. Raises UnitNotFound when the pod disappeared meanwhile.
    """
    helper = helper or helper_container()
    namespace, name = pod.metadata.namespace, pod.metadata.name

    before = kube_ops.serialize(pod)

    modified = copy.deepcopy(pod)
    existing = list(modified.spec.ephemeral_containers or [])
    if all(ec.name != helper.name for ec in existing):
        modified.spec.ephemeral_containers = existing + [helper]
    after = kube_ops.serialize(modified)

    patch = create_two_way_merge_patch(_decode(before), _decode(after))
    if not patch:
        db.log_event("INFO", f"Ephemeral container '{helper.name}' already present", namespace=namespace, pod=name)
        return False

    try:
        kube_ops.patch_ephemeral_containers(api, namespace, name, patch)
    except UnitNotFound as e:
        raise UnitNotFound(f"pod not found: {namespace}/{name}") from e

    db.log_event("INFO", "Ephemeral container injected successfully", namespace=namespace, pod=name)
    return True


def perform(action: RemedialAction, api: client.CoreV1Api, pod: client.V1Pod) -> str:
    """Run the configured strategy against ``pod`` and record the outcome.

    Returns one of ``done``, ``gone`` or ``skipped``. Errors other than
    UnitNotFound are recorded and re-raised for the loop to classify.
    """
    namespace, name = pod.metadata.namespace, pod.metadata.name
    detail = ""
    try:
        if action is RemedialAction.DELETE:
            outcome = "done" if remove_unit(api, namespace, name, uid=pod.metadata.uid) else "gone"
        else:
            outcome = "done" if inject_kill(api, pod) else "skipped"
    except UnitNotFound as e:
        outcome, detail = "gone", str(e)
        db.log_event("INFO", f"Pod vanished before {action.value}: {e}", namespace=namespace, pod=name)
    except ReaperError as e:
        db.record_action(namespace, name, action.value, "retry" if e.retryable else "failed", f"{type(e).__name__}: {e}")
        raise

    db.record_action(namespace, name, action.value, outcome, detail or None)
    if outcome == "done":
        _announce(api, pod, action)
    return outcome


def _announce(api: client.CoreV1Api, pod: client.V1Pod, action: RemedialAction) -> None:
    namespace, name = pod.metadata.namespace, pod.metadata.name
    message = (
        "Essential container completed, pod deleted"
        if action is RemedialAction.DELETE
        else "Essential container completed, root process signalled"
    )
    if settings.emit_kube_events:
        try:
            kube_ops.record_event(api, pod, reason="EssentialContainerCompleted", message=message)
        except ReaperError as e:
            db.log_event("WARN", f"Could not record pod event: {e}", namespace=namespace, pod=name)
    notify_action(namespace, name, action.value, "done", message)
