from __future__ import annotations

from dataclasses import asdict, dataclass
from threading import Lock

from kubernetes.client import V1Pod

from .db import utc_now

IDLE = "Idle"
EVALUATING = "Evaluating"
ACTING = "Acting"


@dataclass
class UnitStatus:
    key: str
    state: str = IDLE
    essential: str = ""
    uid: str = ""
    attempts: int = 0
    last_outcome: str = ""
    updated_at: str = ""


class RuntimeState:
    """In-memory state for reconciliation: last-seen snapshots and per-pod state."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.snapshots: dict[str, V1Pod] = {}  # pod uid -> last observed pod
        self.units: dict[str, UnitStatus] = {}  # namespace/name -> status
        self.counters: dict[str, int] = {}

    def swap_snapshot(self, uid: str, pod: V1Pod) -> V1Pod | None:
        """Remember ``pod`` as the latest snapshot and return the previous one."""
        with self.lock:
            prev = self.snapshots.get(uid)
            self.snapshots[uid] = pod
            return prev

    def drop_snapshot(self, uid: str) -> None:
        with self.lock:
            self.snapshots.pop(uid, None)

    def prune_snapshots(self, keep: set[str]) -> list[V1Pod]:
        """Forget every snapshot whose uid is not in ``keep``; return the dropped pods."""
        with self.lock:
            gone = [uid for uid in self.snapshots if uid not in keep]
            return [self.snapshots.pop(uid) for uid in gone]

    def set_state(
        self,
        key: str,
        state: str,
        essential: str | None = None,
        outcome: str | None = None,
        uid: str | None = None,
    ) -> None:
        with self.lock:
            st = self.units.setdefault(key, UnitStatus(key=key))
            if state == ACTING and st.state != ACTING:
                st.attempts = 0
            if state == ACTING:
                st.attempts += 1
            st.state = state
            if essential is not None:
                st.essential = essential
            if uid is not None:
                st.uid = uid
            if outcome is not None:
                st.last_outcome = outcome
            st.updated_at = utc_now()

    def get_state(self, key: str) -> str:
        with self.lock:
            st = self.units.get(key)
            return st.state if st else IDLE

    def expected_uid(self, key: str) -> str:
        with self.lock:
            st = self.units.get(key)
            return st.uid if st else ""

    def forget_unit(self, key: str) -> None:
        with self.lock:
            self.units.pop(key, None)

    def bump(self, counter: str) -> None:
        with self.lock:
            self.counters[counter] = self.counters.get(counter, 0) + 1

    def snapshot(self) -> dict:
        with self.lock:
            return {
                "units": [asdict(u) for u in self.units.values()],
                "counters": dict(self.counters),
                "tracked_pods": len(self.snapshots),
            }
