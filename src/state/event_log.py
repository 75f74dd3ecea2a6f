from __future__ import annotations
from typing import Optional, Dict, Any, List
import threading
from .models import EventLogEntry, new_id, _now


class EventLog:
    """Audit trail of decisions and administrative actions for one session."""

    def __init__(self):
        self._entries: List[EventLogEntry] = []
        self._lock = threading.Lock()

    def log(self, kind: str, correlation_id: str, actor: str, shard: Optional[str], data: Dict[str, Any]) -> EventLogEntry:
        entry = EventLogEntry(
            id=new_id(),
            timestamp=_now(),
            correlation_id=correlation_id,
            actor=actor,
            shard=shard,
            kind=kind,
            data=data,
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def entries(self, kind: Optional[str] = None) -> List[EventLogEntry]:
        with self._lock:
            return [e for e in self._entries if kind is None or e.kind == kind]
