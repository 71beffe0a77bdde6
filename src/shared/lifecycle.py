"""Expiration lifecycle shared by every context that keeps short-lived records.

Form sessions and guest carts both carry an ``expires_at`` timestamp and are
removed by a periodic sweep once it passes. The sweep itself is the same
everywhere: select the expired rows, purge them one at a time so a single
bad row cannot stall the rest, then report how many were removed.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ValidationError

logger = structlog.get_logger(__name__)

RECOVERABLE_ERRORS = (ValidationError, InvalidOperationError, ObjectNotFoundError)


def utc_now() -> datetime:
    return datetime.now(UTC)


def naive_utc(value: datetime | None) -> datetime | None:
    """Normalize a timestamp to naive UTC so stored and computed values compare."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def has_expired(expires_at: datetime | None, as_of: datetime) -> bool:
    """True when ``expires_at`` is set and lies strictly before ``as_of``."""
    expires_at = naive_utc(expires_at)
    return expires_at is not None and expires_at < naive_utc(as_of)


@dataclass
class SweepResult:
    name: str
    candidates: int = 0
    removed: int = 0
    skipped: int = 0
    failed: int = 0


class ExpirationReaper:
    """One pass of select-expired → purge-each → report.

    ``find_expired(as_of)`` returns the expired records. ``purge(record)``
    removes one record (children before parent) and returns False when the
    record is busy and should be left for a later sweep. ``describe(record)``
    gives the key/value fields logged for that record.
    """

    def __init__(self, name, find_expired, purge, describe=None, recoverable=RECOVERABLE_ERRORS):
        self.name = name
        self.find_expired = find_expired
        self.purge = purge
        self.describe = describe or (lambda record: {"id": str(getattr(record, "id", record))})
        self.recoverable = tuple(recoverable)

    def sweep(self, as_of: datetime | None = None) -> SweepResult:
        as_of = as_of or utc_now()
        result = SweepResult(name=self.name)

        logger.info("Starting expiration sweep", reaper=self.name, as_of=naive_utc(as_of).isoformat())

        expired = list(self.find_expired(as_of))
        result.candidates = len(expired)
        if not expired:
            logger.info("Nothing to reap", reaper=self.name)
            return result

        for record in expired:
            fields = self.describe(record)
            try:
                purged = self.purge(record)
            except self.recoverable as exc:
                result.failed += 1
                logger.warning("Failed to reap record", reaper=self.name, error=str(exc), **fields)
                continue

            if purged is False:
                result.skipped += 1
                logger.info("Record busy, left for next sweep", reaper=self.name, **fields)
            else:
                result.removed += 1
                logger.info("Reaped expired record", reaper=self.name, **fields)

        logger.info(
            "Expiration sweep complete",
            reaper=self.name,
            candidates=result.candidates,
            removed=result.removed,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result
