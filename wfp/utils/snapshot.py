"""Session snapshots that bridge a full external reset.

A snapshot is written right before the tools toggle reloads the runtime and
read back once on startup. It is consumed at most once and only applied when
it is at most SNAPSHOT_TTL_SECONDS old; anything older is discarded as stale.
"""

import json
import sys
import time
from pathlib import Path
from typing import Callable, Protocol

from wfp.errors import SnapshotStaleError
from wfp.state import PHASES, STAGES, SessionState, new_session

SNAPSHOT_TTL_SECONDS = 5.0

_LIST_FIELDS = ("turns", "ui_markup")
_COUNTER_FIELDS = ("clarification_count", "diagram_count", "diagram_retry_count")


class SnapshotBackend(Protocol):
    def save(self, session_id: str, blob: str) -> None: ...

    def load(self, session_id: str) -> str | None: ...

    def delete(self, session_id: str) -> None: ...


class MemorySnapshotBackend:
    """Dict-backed persistence surface (tests and single-process use)."""

    def __init__(self):
        self.blobs: dict[str, str] = {}

    def save(self, session_id: str, blob: str) -> None:
        self.blobs[session_id] = blob

    def load(self, session_id: str) -> str | None:
        return self.blobs.get(session_id)

    def delete(self, session_id: str) -> None:
        self.blobs.pop(session_id, None)


class FileSnapshotBackend:
    """One JSON file per session, overwritten on every save."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, session_id: str) -> Path:
        safe = "".join(ch for ch in session_id if ch.isalnum() or ch in "-_")
        return self.directory / f"{safe}.json"

    def save(self, session_id: str, blob: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path(session_id).write_text(blob, encoding="utf-8")

    def load(self, session_id: str) -> str | None:
        path = self._path(session_id)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def delete(self, session_id: str) -> None:
        self._path(session_id).unlink(missing_ok=True)


class SessionSnapshotStore:
    def __init__(
        self,
        backend: SnapshotBackend,
        ttl: float = SNAPSHOT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.ttl = ttl
        self.clock = clock

    def save(self, state: SessionState) -> dict:
        """Serialize the observable session state and persist it."""
        snapshot = {
            "session_id": state["session_id"],
            "turns": list(state["turns"]),
            "stage": state["stage"],
            "counters": {name: state[name] for name in _COUNTER_FIELDS},
            "ui_markup": list(state["display_log"]),
            "captured_at": self.clock(),
            "current_diagram": state["current_diagram"],
            "diagram_status": state["diagram_status"],
            "last_design_proposal": state["last_design_proposal"],
            "retry_context": state["retry_context"],
            "artifact": state["artifact"],
            "downloaded_path": state["downloaded_path"],
            "input_draft": state["input_draft"],
        }
        self.backend.save(state["session_id"], json.dumps(snapshot))
        return snapshot

    def restore(self, session_id: str) -> SessionState | None:
        """Load, consume and validate a snapshot.

        Returns a complete SessionState, or None when there is no snapshot,
        it is stale, or it cannot be fully restored.
        """
        blob = self.backend.load(session_id)
        if blob is None:
            return None
        # Consumed at most once, whatever happens next.
        self.backend.delete(session_id)

        try:
            snapshot = json.loads(blob)
            self._check_fresh(snapshot)
            return _rebuild_state(snapshot)
        except SnapshotStaleError as exc:
            print(f"[WFP] Discarding snapshot for {session_id}: {exc}", file=sys.stderr)
            return None
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            print(f"[WFP] Ignoring unreadable snapshot for {session_id}: {exc!r}", file=sys.stderr)
            return None

    def _check_fresh(self, snapshot: dict) -> None:
        age = self.clock() - float(snapshot["captured_at"])
        if age > self.ttl:
            raise SnapshotStaleError(f"captured {age:.1f}s ago (window {self.ttl:.0f}s)")


def _rebuild_state(snapshot: dict) -> SessionState:
    """Build a full SessionState from a snapshot or raise; never half-apply."""
    if snapshot["stage"] not in STAGES:
        raise ValueError(f"Unknown stage {snapshot['stage']!r}")
    for name in _LIST_FIELDS:
        if not isinstance(snapshot[name], list):
            raise TypeError(f"{name} must be a list")
    for turn in snapshot["turns"]:
        if turn["role"] not in ("user", "assistant") or not isinstance(turn["text"], str):
            raise ValueError("Malformed conversation turn")

    counters = snapshot["counters"]
    retry_context = snapshot.get("retry_context")
    if retry_context is not None and retry_context["failed_phase"] not in PHASES:
        raise ValueError(f"Unknown phase {retry_context['failed_phase']!r}")

    state = new_session(snapshot["session_id"])
    state.update({
        "turns": [{"role": t["role"], "text": t["text"]} for t in snapshot["turns"]],
        "stage": snapshot["stage"],
        "clarification_count": int(counters["clarification_count"]),
        "diagram_count": int(counters["diagram_count"]),
        "diagram_retry_count": int(counters["diagram_retry_count"]),
        "current_diagram": snapshot.get("current_diagram"),
        "diagram_status": snapshot.get("diagram_status") or "none",
        "last_design_proposal": snapshot.get("last_design_proposal") or "",
        "retry_context": retry_context,
        "artifact": snapshot.get("artifact"),
        "downloaded_path": snapshot.get("downloaded_path"),
        "display_log": list(snapshot["ui_markup"]),
        "input_draft": snapshot.get("input_draft") or "",
    })
    return state
