"""
Observability & Metrics - dispatch counters and timings per skill.

Fed by registry events (`beforeExecute`, `afterExecute`, `skillError`,
`skillConflict`, `executeCancelled`). Data is exposed via `get_snapshot()` for
the web API and optionally appended to a JSONL file for post-hoc analysis.
"""

import json
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger


@dataclass
class SkillMetrics:
    """Accumulated metrics for a single skill."""

    name: str
    dispatches: int = 0
    failures: int = 0
    errors: int = 0
    conflicts_won: int = 0
    total_time_s: float = 0.0
    last_used_at: Optional[float] = None


class MetricsCollector:
    """
    Metrics store for one registry.
    Guarded by a simple lock since the web API reads snapshots from
    request handlers.
    """

    def __init__(self, events_file: Optional[Path] = None):
        self.events_file = events_file
        self._skills: Dict[str, SkillMetrics] = {}
        self._lock = threading.Lock()
        self._inflight: Dict[int, float] = {}
        self._global_dispatches = 0
        self._global_errors = 0
        self._global_conflicts = 0
        self._boot_time = time.time()

    def attach(self, registry: Any) -> "MetricsCollector":
        """Subscribe to a SkillRegistry's events."""
        registry.on("beforeExecute", self._on_before)
        registry.on("afterExecute", self._on_after)
        registry.on("skillError", self._on_error)
        registry.on("skillConflict", self._on_conflict)
        registry.on("executeCancelled", self._on_cancelled)
        return self

    def _get_skill(self, name: str) -> SkillMetrics:
        if name not in self._skills:
            self._skills[name] = SkillMetrics(name=name)
        return self._skills[name]

    def _on_before(self, payload: Dict[str, Any]) -> None:
        self._inflight[id(payload.get("context"))] = time.monotonic()

    def _on_after(self, payload: Dict[str, Any]) -> None:
        started = self._inflight.pop(id(payload.get("context")), None)
        duration = time.monotonic() - started if started is not None else 0.0
        result = payload.get("result")
        self.record_dispatch(
            payload["skill"], duration, success=bool(getattr(result, "success", True))
        )

    def _on_cancelled(self, payload: Dict[str, Any]) -> None:
        self._inflight.pop(id(payload.get("context")), None)

    def _on_error(self, payload: Dict[str, Any]) -> None:
        if payload.get("phase") == "execute":
            self._inflight.pop(id(payload.get("context")), None)
        self.record_error(
            payload.get("name", "unknown"),
            payload.get("phase", ""),
            str(payload.get("error", "")),
        )

    def _on_conflict(self, payload: Dict[str, Any]) -> None:
        matches = payload.get("matches") or []
        with self._lock:
            self._global_conflicts += 1
            if matches:
                self._get_skill(matches[0]["name"]).conflicts_won += 1
        self._log_event(
            {
                "type": "conflict",
                "command": payload.get("command", "")[:200],
                "matches": [m["name"] for m in matches],
                "ts": time.time(),
            }
        )

    def record_dispatch(self, skill: str, duration_s: float, success: bool = True) -> None:
        """Record one routed command with its duration and outcome."""
        with self._lock:
            sm = self._get_skill(skill)
            sm.dispatches += 1
            sm.total_time_s += duration_s
            sm.last_used_at = time.time()
            if not success:
                sm.failures += 1
            self._global_dispatches += 1

        self._log_event(
            {
                "type": "dispatch",
                "skill": skill,
                "duration_s": round(duration_s, 3),
                "success": success,
                "ts": time.time(),
            }
        )

    def record_error(self, skill: str, phase: str, detail: str = "") -> None:
        with self._lock:
            self._get_skill(skill).errors += 1
            self._global_errors += 1

        self._log_event(
            {
                "type": "error",
                "skill": skill,
                "phase": phase,
                "detail": detail[:500],
                "ts": time.time(),
            }
        )

    def get_snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all metrics."""
        with self._lock:
            return {
                "uptime_s": round(time.time() - self._boot_time, 1),
                "global": {
                    "dispatches": self._global_dispatches,
                    "errors": self._global_errors,
                    "conflicts": self._global_conflicts,
                    "in_flight": len(self._inflight),
                },
                "skills": {k: asdict(v) for k, v in self._skills.items()},
            }

    def get_skill_metrics(self, name: str) -> Optional[dict]:
        with self._lock:
            sm = self._skills.get(name)
            return asdict(sm) if sm else None

    def _log_event(self, event: dict) -> None:
        """Append a structured event to the metrics JSONL file, if one is configured."""
        if self.events_file is None:
            return
        try:
            self.events_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.events_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(event) + "\n")
        except OSError as e:
            logger.debug(f"Failed to write metrics event: {e}")
