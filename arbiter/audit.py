"""Append-only record of every prompt and response exchanged with a model."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict
import json
import threading
import time


@dataclass
class AuditLog:
    path: Path | None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def log(self, event: str, data: Dict[str, Any] | None = None) -> None:
        if self.path is None:
            return
        payload = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S"),
            "event": event,
            "data": data or {},
        }
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(payload) + "\n")

    def read(self, limit: int | None = None) -> list[Dict[str, Any]]:
        if self.path is None or not self.path.exists():
            return []
        lines = self.path.read_text(encoding="utf-8").splitlines()
        if limit is not None:
            lines = lines[-limit:]
        return [json.loads(line) for line in lines if line.strip()]
