"""
JSON logging and the audit logger.

Consultation narratives are personal health information: audit details never
carry them verbatim, only their length. Credentials are redacted outright.
"""
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from app.core.config import settings

REDACTED = "***REDACTED***"

_CREDENTIAL_PATTERN = re.compile(
    r'(password|secret|token|authorization|credential)'
    r'[\"\']?\s*[:=]\s*[\"\']?[^\s,;\"\'}{]+',
    re.IGNORECASE,
)

_CREDENTIAL_KEYS = frozenset({
    "password", "secret", "secret_key", "token", "access_token", "authorization", "credential",
})

# Free text written by users or consultants
_NARRATIVE_KEYS = frozenset({
    "description", "problem_description", "dream_content", "content", "context",
    "text", "review", "explanation", "answer_value", "handover_notes", "internal_notes",
})

# LogRecord extras copied into the JSON line
_RECORD_FIELDS = ("user_id", "action", "entity_type", "entity_id", "routing_version")


def scrub(value: Any) -> Any:
    """Copy of `value` with credentials redacted and narratives reduced to their length."""
    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            lowered = str(key).lower()
            if lowered in _CREDENTIAL_KEYS:
                cleaned[key] = REDACTED
            elif lowered in _NARRATIVE_KEYS and isinstance(item, str):
                cleaned[key] = f"<{len(item)} chars>"
            else:
                cleaned[key] = scrub(item)
        return cleaned
    if isinstance(value, (list, tuple)):
        return [scrub(item) for item in value]
    return value


def scrub_message(message: str) -> str:
    return _CREDENTIAL_PATTERN.sub(rf'\1={REDACTED}', message)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": scrub_message(record.getMessage()),
        }
        for attr in _RECORD_FIELDS:
            value = getattr(record, attr, None)
            if value is not None:
                entry[attr] = value

        if record.exc_info:
            entry["exception"] = scrub_message(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)


def setup_logging():
    """Install the JSON handler on the root logger once."""
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("rq.worker").setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class AuditLogger:
    """
    Audit events for triage decisions (routing, escalation, overrides).

    Events go to the `audit` logger; rows in `audit_logs` are written by the
    services that need a durable trail.
    """

    def __init__(self):
        self.logger = get_logger("audit")

    def log(
        self,
        action: str,
        user_id: Optional[int] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        details: Optional[dict] = None,
        level: int = logging.INFO,
    ):
        message = f"AUDIT: {action}"
        if entity_type and entity_id is not None:
            message += f" on {entity_type}:{entity_id}"
        if details:
            message += f" - {json.dumps(scrub(details), default=str)}"

        self.logger.log(level, message, extra={
            "user_id": user_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "routing_version": settings.ROUTING_VERSION if entity_type == "consultation_ticket" else None,
        })


audit_logger = AuditLogger()
