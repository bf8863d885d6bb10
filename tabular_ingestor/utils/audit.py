"""Audit events for security-sensitive ingestion operations.

Events are written to a dedicated logger; durable storage is handled by the
log pipeline, not by this service.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .logging import setup_logger

audit_logger = setup_logger("tabular_ingestor.audit", context={"log_type": "audit"})


class AuditAction(str, Enum):
    """Enumeration of auditable actions."""

    AGENT_AUTH_SUCCESS = "agent.auth.success"
    AGENT_AUTH_FAILURE = "agent.auth.failure"
    AGENT_KEY_ISSUED = "agent.key.issued"
    FILE_PUSHED = "ingestion.push"
    FILE_DELETED = "ingestion.delete"
    DATASET_PURGED = "data.delete"
    DATASET_READ = "data.read"
    MANUAL_SCAN = "ingestion.scan.manual"
    JOBS_REQUEUED = "ingestion.jobs.requeued"
    HISTORY_CLEARED = "ingestion.history.cleared"
    ROWS_REENCRYPTED = "data.reencrypted"


class AuditOutcome(str, Enum):
    """Audit event outcome."""

    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


class AuditEvent(BaseModel):
    """Structured audit event."""

    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    action: AuditAction
    outcome: AuditOutcome
    actor: str
    actor_type: str = "agent"
    resource: str | None = None
    client_ip: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: str | None = None


class AuditLogger:
    """Writes :class:`AuditEvent` records to the audit logger."""

    _SECRET_KEYS = frozenset({"agent_key", "agentkey", "authorization", "api_key", "password"})

    def log_event(self, event: AuditEvent) -> None:
        payload = event.model_dump(exclude_none=True, mode="json")
        payload["details"] = {
            key: ("[REDACTED]" if key.lower() in self._SECRET_KEYS else value)
            for key, value in event.details.items()
        }
        audit_logger.info(
            f"AUDIT: {event.action.value}",
            extra={
                "audit_event": payload,
                "actor": event.actor,
                "action": event.action.value,
                "outcome": event.outcome.value,
                "resource": event.resource,
                "status": event.outcome.value,
            },
        )

    def log(
        self,
        action: AuditAction,
        outcome: AuditOutcome,
        *,
        actor: str,
        actor_type: str = "agent",
        resource: str | None = None,
        client_ip: str | None = None,
        error_message: str | None = None,
        **details: Any,
    ) -> None:
        self.log_event(
            AuditEvent(
                action=action,
                outcome=outcome,
                actor=actor,
                actor_type=actor_type,
                resource=resource,
                client_ip=client_ip,
                error_message=error_message,
                details=details,
            )
        )


_audit_logger = AuditLogger()


def get_audit_logger() -> AuditLogger:
    return _audit_logger
