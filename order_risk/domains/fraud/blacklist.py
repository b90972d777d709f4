"""Administrative blacklist maintenance."""

import uuid
from datetime import UTC, datetime

import structlog

from .models import BlacklistEntry, BlacklistType, Severity
from .stores import AuditSink, BlacklistRegistry, normalize_identifier

logger = structlog.get_logger()


class BlacklistAdmin:
    """Adds entries to the blacklist registry on behalf of an administrator."""

    def __init__(self, registry: BlacklistRegistry, audit: AuditSink | None = None) -> None:
        self._registry = registry
        self._audit = audit

    async def add_entry(
        self,
        entry_type: BlacklistType,
        value: str,
        reason: str,
        severity: Severity,
        added_by: str,
        expires_at: datetime | None = None,
    ) -> BlacklistEntry:
        value = normalize_identifier(entry_type, value)
        if not value:
            raise ValueError("Blacklist value must not be empty")

        now = datetime.now(UTC)
        if expires_at is not None and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        if expires_at is not None and expires_at <= now:
            raise ValueError("Blacklist expiry must be in the future")

        entry = BlacklistEntry(
            id=str(uuid.uuid4()),
            type=entry_type,
            value=value,
            reason=reason,
            severity=severity,
            added_by=added_by,
            added_at=now,
            expires_at=expires_at,
            is_active=True,
        )
        await self._registry.add(entry)

        logger.info(
            "blacklist_entry_added",
            entry_id=entry.id,
            entry_type=entry_type.value,
            severity=severity.value,
            added_by=added_by,
        )
        if self._audit is not None:
            try:
                await self._audit.log(
                    "blacklist_entry_added",
                    {
                        "type": entry_type.value,
                        "value": value,
                        "reason": reason,
                        "severity": severity.value,
                        "added_by": added_by,
                    },
                )
            except Exception:
                logger.exception("audit_log_failed", audit_event="blacklist_entry_added")

        return entry
