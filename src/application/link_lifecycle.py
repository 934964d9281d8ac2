# src/application/link_lifecycle.py

from datetime import datetime
from typing import Callable, Dict, FrozenSet, List, Optional
from uuid import UUID

from shared.libs.observability.metrics import LINK_TRANSITIONS
from src.config.logger_config import log
from src.core.exceptions import InvalidTransitionError
from src.domain.models import (
    TERMINAL_STATUSES,
    LinkStatus,
    PaymentLink,
    as_utc,
    utcnow,
)
from src.infrastructure.database.repositories.payment_link_repository import (
    PaymentLinkRepository,
    SettlementFields,
)


class LinkLifecycle:
    """
    State machine of a single payment link.

    pending -> paid | expired | cancelled; every target state is terminal.
    Expiry is evaluated lazily: callers pass links through `refresh` on
    every read so an overdue link is never returned as pending.
    All writes go through PaymentLinkRepository.update_status.
    """

    ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
        LinkStatus.PENDING.value: TERMINAL_STATUSES,
        **{status: frozenset() for status in TERMINAL_STATUSES},
    }

    def __init__(
        self,
        repository: PaymentLinkRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.clock = clock

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        return target in cls.ALLOWED_TRANSITIONS.get(current, frozenset())

    def is_overdue(self, link: PaymentLink, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        return (
            link.status == LinkStatus.PENDING.value
            and as_utc(link.expires_at) < now
        )

    def refresh(self, link: PaymentLink) -> PaymentLink:
        """Expire the link first if it is pending past its deadline."""
        if not self.is_overdue(link):
            return link

        log.info(
            "Payment link past its deadline, expiring",
            link_id=str(link.id),
            expires_at=str(link.expires_at),
        )
        if self.repository.update_status(
            link.id,
            LinkStatus.EXPIRED.value,
            expected_status=LinkStatus.PENDING.value,
        ):
            LINK_TRANSITIONS.labels(
                from_status=LinkStatus.PENDING.value,
                to_status=LinkStatus.EXPIRED.value,
            ).inc()
        return self.repository.reload(link)

    def refresh_all(self, links: List[PaymentLink]) -> List[PaymentLink]:
        return [self.refresh(link) for link in links]

    def expire_overdue(self, merchant_id: UUID) -> int:
        """Expire all of a merchant's overdue links in one statement."""
        expired = self.repository.expire_overdue(merchant_id, self.clock())
        if expired:
            LINK_TRANSITIONS.labels(
                from_status=LinkStatus.PENDING.value,
                to_status=LinkStatus.EXPIRED.value,
            ).inc(expired)
        return expired

    def cancel(self, link: PaymentLink) -> PaymentLink:
        """
        Cancel a pending link.
        Raises:
            InvalidTransitionError: If the link is paid, expired or already cancelled.
        """
        link = self.refresh(link)
        if not self.can_transition(link.status, LinkStatus.CANCELLED.value):
            log.warning(
                "Cancellation refused",
                link_id=str(link.id),
                status=link.status,
            )
            raise InvalidTransitionError(
                f"Cannot cancel a payment link with status '{link.status}'"
            )

        if not self.transition(link, LinkStatus.CANCELLED.value):
            # Another writer moved the link first
            raise InvalidTransitionError(
                f"Cannot cancel a payment link with status '{link.status}'"
            )
        return link

    def transition(
        self,
        link: PaymentLink,
        target: str,
        settlement: Optional[SettlementFields] = None,
    ) -> bool:
        """
        Move `link` to `target` and reload it.

        Returns:
            True if the transition was applied by this call, False when the
            link already had the target status or lost a concurrent race.
        Raises:
            InvalidTransitionError: If the state machine forbids the edge.
        """
        current = link.status
        if current == target:
            return False
        if not self.can_transition(current, target):
            raise InvalidTransitionError(
                f"Cannot move a payment link from '{current}' to '{target}'"
            )

        applied = self.repository.update_status(
            link.id, target, expected_status=current, settlement=settlement
        )
        self.repository.reload(link)
        if applied:
            LINK_TRANSITIONS.labels(from_status=current, to_status=target).inc()
        return applied
