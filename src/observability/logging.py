from __future__ import annotations
from typing import Any, Dict
from datetime import datetime, timezone
import json
import logging

_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
_events = logging.getLogger("visits.events")


def configure_logging(level: int = logging.INFO):
    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)


def structured_log(event: str, correlation_id: str, data: Dict[str, Any]):
    record = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "cid": correlation_id,
        "data": data,
    }
    _events.info(json.dumps(record, default=str))
