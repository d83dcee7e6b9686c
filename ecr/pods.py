from __future__ import annotations

from dataclasses import dataclass

from kubernetes.client import V1Pod

RUNNING = "Running"
WAITING = "Waiting"
TERMINATED = "Terminated"
UNKNOWN = "unknown"

COMPLETED = "Completed"


@dataclass(frozen=True)
class ContainerState:
    phase: str  # Running|Waiting|Terminated|unknown
    reason: str = ""
    exit_code: int | None = None


UNKNOWN_STATE = ContainerState(phase=UNKNOWN)


def pod_key(pod: V1Pod) -> str:
    return f"{pod.metadata.namespace}/{pod.metadata.name}"


def pod_uid(pod: V1Pod) -> str:
    return pod.metadata.uid or pod_key(pod)


def extract(pod: V1Pod | None, container_name: str) -> ContainerState:
    """Return the lifecycle state of ``container_name`` in ``pod``.

    A container without a status record yields ``UNKNOWN_STATE``.
    """
    status = pod.status if pod is not None else None
    for cs in (status.container_statuses if status else None) or []:
        if cs.name != container_name:
            continue
        state = cs.state
        if state is None:
            return UNKNOWN_STATE
        if state.running is not None:
            return ContainerState(phase=RUNNING)
        if state.waiting is not None:
            return ContainerState(phase=WAITING, reason=state.waiting.reason or "")
        if state.terminated is not None:
            return ContainerState(
                phase=TERMINATED,
                reason=state.terminated.reason or "",
                exit_code=state.terminated.exit_code,
            )
        return UNKNOWN_STATE
    return UNKNOWN_STATE


def is_completion_event(old: V1Pod | None, new: V1Pod, container_name: str) -> bool:
    """True only on a fresh Running -> Terminated(Completed) edge of the container."""
    old_phase = extract(old, container_name).phase
    new_state = extract(new, container_name)
    return old_phase == RUNNING and new_state.phase == TERMINATED and new_state.reason == COMPLETED


def is_stranded(pod: V1Pod, container_name: str) -> bool:
    """Essential container already completed while some other container still runs.

    Used for pods first seen after the transition already happened.
    """
    state = extract(pod, container_name)
    if state.phase != TERMINATED or state.reason != COMPLETED:
        return False
    statuses = (pod.status.container_statuses if pod.status else None) or []
    return any(extract(pod, cs.name).phase == RUNNING for cs in statuses if cs.name != container_name)


def essential_container_name(pod: V1Pod, label: str, default: str) -> str:
    labels = (pod.metadata.labels if pod.metadata else None) or {}
    value = (labels.get(label) or "").strip()
    return value or default
