"""Ordering bounded context: guest and customer shopping carts.

Guest carts are short-lived: they carry an ``expires_at`` that every
activity pushes forward and are purged by the same expiration sweep that
removes stale form sessions.
"""

from protean.domain import Domain

from ordering.utils.logging import get_logger

ordering = Domain(name="ordering")

logger = get_logger(__name__)
