# flagengine/utils/logging.py
import json
import logging
import sys
from typing import Optional, Any, Dict
from fastapi import Request

# ---------- Structured JSON Logging ----------

_CONTEXT_FIELDS = (
    "path",
    "method",
    "status",
    "request_id",
    "duration_ms",
    "feature",
    "source",
    "experiment",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        # Optional request / evaluation context
        for field in _CONTEXT_FIELDS:
            if hasattr(record, field):
                payload[field] = getattr(record, field)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers = [handler]


# ---------- Helpers to attach request context ----------
def get_request_context(
    request: Optional[Request] = None, duration_ms: Optional[float] = None
) -> Dict[str, Any]:
    context: Dict[str, Any] = {}
    if request:
        context.update(
            {
                "path": request.url.path,
                "method": request.method,
                "request_id": request.headers.get("X-Request-ID", "none"),
            }
        )
    if duration_ms is not None:
        context["duration_ms"] = float(round(duration_ms, 2))
    return context


def get_evaluation_context(feature: str, source: str, experiment: Optional[str] = None) -> Dict[str, Any]:
    context: Dict[str, Any] = {"feature": feature, "source": source}
    if experiment:
        context["experiment"] = experiment
    return context
