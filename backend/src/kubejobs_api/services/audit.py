"""Audit service recording job lifecycle events."""

import logging
from datetime import datetime

from kubejobs_api.core.config import Settings, get_settings
from kubejobs_api.core.store import JsonStore
from kubejobs_api.models.audit import EventOpts, JobAuditEvent
from kubejobs_api.models.permission import PermissionScheme

logger = logging.getLogger(__name__)


class AuditEventRejectedError(ValueError):
    """Raised when an event descriptor is not acceptable."""


class AuditService:
    """Service for opening, completing and querying job audit events.

    Events are opened with ``new_event`` and closed with ``done``; the pair
    mirrors how long-running platform actions are audited, even though job
    events from Kubernetes are opened and closed immediately.

    Example:
        ```python
        service = get_audit_service()
        event = service.new_event(
            EventOpts(
                kind=PermissionScheme.JOB_RUN,
                target=EventTarget(value="mailer"),
                allowed=allowed(PermissionScheme.JOB_READ_EVENTS, job_context("mailer")),
            )
        )
        service.done(event, custom_data={"event-reason": "Completed"})
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the AuditService.

        Args:
            settings: Application settings (uses default if not provided)
        """
        self.settings = settings or get_settings()
        self._store: JsonStore[JobAuditEvent] | None = None

    @property
    def store(self) -> JsonStore[JobAuditEvent]:
        """Get the event store, initializing if needed."""
        if self._store is None:
            file_path = self.settings.data_dir / "metadata" / "job_events.json"
            self._store = JsonStore[JobAuditEvent](
                file_path=file_path,
                collection_key="events",
                model_class=JobAuditEvent,
            )
        return self._store

    def new_event(self, opts: EventOpts) -> JobAuditEvent:
        """Open and persist a running event.

        Raises:
            AuditEventRejectedError: If the target is empty or no permission
                scope is given
        """
        if not opts.target.value:
            raise AuditEventRejectedError("event target value must not be empty")
        if opts.allowed is None or not opts.allowed.contexts:
            raise AuditEventRejectedError(
                f"event {opts.kind.value} on {opts.target.value} has no permission scope"
            )

        event = JobAuditEvent(
            kind=opts.kind,
            target=opts.target,
            allowed=opts.allowed,
            owner=opts.owner,
            cancelable=opts.cancelable,
        )
        return self.store.create(event)

    def done(
        self,
        event: JobAuditEvent,
        error: Exception | None = None,
        custom_data: dict[str, str] | None = None,
    ) -> JobAuditEvent:
        """Mark an event finished, recording its outcome and custom data."""
        event.running = False
        event.end_time = datetime.utcnow()
        event.success = error is None
        event.error = str(error) if error is not None else ""
        event.custom_data = dict(custom_data or {})
        self.store.update(event.id, event)
        logger.debug(
            "Recorded job event %s on %s (success=%s)",
            event.kind.value,
            event.target.value,
            event.success,
        )
        return event

    def get_event(self, event_id: str) -> JobAuditEvent | None:
        """Get a single event by ID."""
        return self.store.get_by_id(event_id)

    def get_events(
        self,
        target_value: str | None = None,
        kind: PermissionScheme | None = None,
        success: bool | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[JobAuditEvent], int]:
        """Query events, newest first.

        Returns:
            Tuple of (page of events, total count before pagination)
        """
        events = self.store.find(
            lambda e: (not target_value or e.target.value == target_value)
            and (not kind or e.kind == kind)
            and (success is None or e.success == success)
        )

        events.sort(key=lambda e: e.start_time, reverse=True)
        total = len(events)
        return events[offset : offset + limit], total


# Global service instance
_audit_service: AuditService | None = None


def get_audit_service() -> AuditService:
    """Get the global AuditService instance."""
    global _audit_service
    if _audit_service is None:
        _audit_service = AuditService()
    return _audit_service


def reset_audit_service() -> None:
    """Reset the global AuditService instance (for testing)."""
    global _audit_service
    _audit_service = None
