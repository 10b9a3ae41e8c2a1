"""Structured journal of status events for automation runs."""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from automation.messages import StatusEvent


@dataclass(slots=True)
class LogPaths:
    base: Path
    events: Path


class StatusJournal:
    """Writes one JSONL record per status event received by the host."""

    def __init__(self, run_id: str, paths: LogPaths) -> None:
        self.run_id = run_id
        self.paths = paths
        self._seq = 0
        self._lock = threading.Lock()
        self._events_file = paths.events.open("a", encoding="utf-8")

    def record(self, event: StatusEvent, *, metadata: Optional[Dict[str, Any]] = None) -> int:
        with self._lock:
            self._seq += 1
            payload = {
                "ts": time.time(),
                "run_id": self.run_id,
                "seq": self._seq,
                "type": event.type.value,
                "message": event.message,
                "timestamp": event.timestamp,
                "extra": event.extra,
                "metadata": metadata or {},
            }
            self._events_file.write(json.dumps(payload, ensure_ascii=False) + "\n")
            self._events_file.flush()
            return self._seq

    def close(self) -> None:
        with self._lock:
            try:
                self._events_file.close()
            except Exception:
                pass


def prepare_log_paths(base_dir: Path) -> LogPaths:
    base_dir.mkdir(parents=True, exist_ok=True)
    return LogPaths(base=base_dir, events=base_dir / "events.jsonl")
