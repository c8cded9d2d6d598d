"""
Structured Logger - JSON log lines for sync events and provider calls
"""
import json
import logging
from typing import Dict, Any, Optional

import config
from utils.timezone import utc_now

SERVICE_NAME = 'calendar-mirror'


def configure_logging(level: Optional[str] = None, structured: Optional[bool] = None):
    """Configure the root logger once at process start"""
    level = level or config.LOG_LEVEL
    structured = config.STRUCTURED_LOGGING if structured is None else structured

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not root.handlers:
        root.addHandler(logging.StreamHandler())

    formatter = JsonFormatter() if structured else logging.Formatter(
        '%(asctime)s %(levelname)s %(name)s: %(message)s'
    )
    for handler in root.handlers:
        handler.setFormatter(formatter)


class StructuredLogger:
    """Emits one JSON object per event so log queries can filter on fields"""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.name = name

    def _entry(self, event_type: str, fields: Dict[str, Any]) -> str:
        entry = {
            "timestamp": utc_now().isoformat(),
            "event_type": event_type,
            "service": SERVICE_NAME,
            "logger": self.name,
        }
        entry.update(fields)
        return json.dumps(entry, default=str)

    def log_sync_event(self, event_type: str, details: Dict[str, Any]):
        """Events named *_failed / *error* log at ERROR, *warning* at WARNING"""
        lowered = event_type.lower()
        if 'failed' in lowered or 'error' in lowered:
            level = logging.ERROR
        elif 'warning' in lowered:
            level = logging.WARNING
        else:
            level = logging.INFO
        self.logger.log(level, self._entry(event_type, details))

    def log_api_call(self, method: str, endpoint: str, status_code: Optional[int] = None,
                     duration_ms: Optional[float] = None, error: Optional[str] = None):
        fields = {"method": method, "endpoint": endpoint}
        if status_code is not None:
            fields["status_code"] = status_code
        if duration_ms is not None:
            fields["duration_ms"] = round(duration_ms, 1)
        if error:
            fields["error"] = error

        # Successful calls are noisy; keep them at DEBUG
        if error or (status_code or 0) >= 500:
            level = logging.ERROR
        elif (status_code or 0) >= 400:
            level = logging.WARNING
        else:
            level = logging.DEBUG
        self.logger.log(level, self._entry("api_call", fields))


class JsonFormatter(logging.Formatter):
    """Wraps plain records in JSON; already-structured messages pass through"""

    def format(self, record):
        message = record.getMessage()
        if message.startswith('{'):
            try:
                json.loads(message)
                return message
            except json.JSONDecodeError:
                pass

        entry = {
            "timestamp": utc_now().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)
