# src/infrastructure/database/repositories/payment_link_repository.py

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, update
from sqlmodel import Session, select

from src.config.logger_config import log
from src.core.exceptions import DatabaseError, PaymentLinkNotFoundError
from src.domain.models import LinkStatus, PaymentLink, utcnow


@dataclass(frozen=True)
class SettlementFields:
    """Gateway-reported data written together with a status change."""

    payment_transaction_id: Optional[str] = None
    payment_method: Optional[str] = None
    payer_confirmed_email: Optional[str] = None
    paid_at: Optional[datetime] = None


class PaymentLinkRepository:
    """
    Persistence for payment links.

    This is the only writer of payment_links rows. Merchant-facing reads
    always filter on merchant_id; the `find_by_*` reference lookups are
    unscoped and exist for gateway notification resolution.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(self, link: PaymentLink) -> PaymentLink:
        try:
            self.session.add(link)
            self.session.commit()
            self.session.refresh(link)
            log.info(
                "Payment link saved to database",
                link_id=str(link.id),
                merchant_id=str(link.merchant_id),
            )
            return link
        except Exception as e:
            self.session.rollback()
            log.critical(
                "Unexpected error during payment link creation",
                error=str(e),
                exc_info=True,
            )
            raise DatabaseError(
                "Failed to create payment link due to internal error"
            ) from e

    def find_by_id(self, link_id: UUID, merchant_id: UUID) -> Optional[PaymentLink]:
        try:
            return self.session.exec(
                select(PaymentLink).where(
                    PaymentLink.id == link_id,
                    PaymentLink.merchant_id == merchant_id,
                )
            ).first()
        except Exception as e:
            log.critical(
                "Database error during payment link lookup",
                link_id=str(link_id),
                error=str(e),
            )
            raise DatabaseError(
                "Failed to retrieve payment link due to internal error"
            ) from e

    def list(
        self,
        merchant_id: UUID,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[PaymentLink], int]:
        """
        List a merchant's links, newest first.
        Returns:
            Tuple of (page of links, total matching the filter).
        """
        conditions = [PaymentLink.merchant_id == merchant_id]
        if status:
            conditions.append(PaymentLink.status == status)

        try:
            total = self.session.exec(
                select(func.count()).select_from(PaymentLink).where(*conditions)
            ).one()
            links = self.session.exec(
                select(PaymentLink)
                .where(*conditions)
                .order_by(PaymentLink.created_at.desc())
                .offset(offset)
                .limit(limit)
            ).all()
            return list(links), total
        except Exception as e:
            log.critical(
                "Unexpected error during list payment links",
                merchant_id=str(merchant_id),
                error=str(e),
                exc_info=True,
            )
            raise DatabaseError(
                "Failed to list payment links due to internal error"
            ) from e

    def update_status(
        self,
        link_id: UUID,
        new_status: str,
        expected_status: str = LinkStatus.PENDING.value,
        settlement: Optional[SettlementFields] = None,
    ) -> bool:
        """
        Move a link to `new_status` if it is still in `expected_status`.

        The UPDATE is conditional on the source state, so two concurrent
        writers cannot both apply a transition. Calling it again with a
        status the link already has is a no-op.

        Returns:
            True if this call changed the row, False otherwise.
        Raises:
            PaymentLinkNotFoundError: If the link does not exist.
            DatabaseError: On storage failures.
        """
        try:
            current = self.session.exec(
                select(PaymentLink.status).where(PaymentLink.id == link_id)
            ).first()
        except Exception as e:
            log.critical(
                "Database error reading link status",
                link_id=str(link_id),
                error=str(e),
            )
            raise DatabaseError("Failed to read payment link status") from e

        if current is None:
            raise PaymentLinkNotFoundError(f"Payment link {link_id} not found")

        if current == new_status:
            log.debug(
                "Status already applied, nothing to update",
                link_id=str(link_id),
                status=new_status,
            )
            return False

        now = utcnow()
        values = {"status": new_status, "updated_at": now}
        if settlement is not None:
            if settlement.payment_transaction_id:
                values["payment_transaction_id"] = settlement.payment_transaction_id
            if settlement.payment_method:
                values["payment_method"] = settlement.payment_method
            if settlement.payer_confirmed_email:
                values["payer_confirmed_email"] = settlement.payer_confirmed_email
        if new_status == LinkStatus.PAID.value:
            values["paid_at"] = (settlement and settlement.paid_at) or now

        try:
            result = self.session.execute(
                update(PaymentLink)
                .where(
                    PaymentLink.id == link_id,
                    PaymentLink.status == expected_status,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            log.critical(
                "Unexpected error during payment link status update",
                link_id=str(link_id),
                error=str(e),
                exc_info=True,
            )
            raise DatabaseError(
                "Failed to update payment link status due to internal error"
            ) from e

        applied = result.rowcount == 1
        if applied:
            log.info(
                "Payment link status updated",
                link_id=str(link_id),
                from_status=expected_status,
                to_status=new_status,
            )
        else:
            log.info(
                "Payment link status changed concurrently, update skipped",
                link_id=str(link_id),
                expected=expected_status,
                wanted=new_status,
            )
        return applied

    def record_transaction_id(self, link_id: UUID, transaction_id: str) -> bool:
        """Store a newer gateway payment attempt id on a pending link."""
        try:
            result = self.session.execute(
                update(PaymentLink)
                .where(
                    PaymentLink.id == link_id,
                    PaymentLink.status == LinkStatus.PENDING.value,
                    (PaymentLink.payment_transaction_id.is_(None))
                    | (PaymentLink.payment_transaction_id != transaction_id),
                )
                .values(payment_transaction_id=transaction_id, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            log.critical(
                "Failed to record payment transaction id",
                link_id=str(link_id),
                error=str(e),
            )
            raise DatabaseError("Failed to record payment transaction id") from e
        return result.rowcount == 1

    def expire_overdue(self, merchant_id: UUID, now: datetime) -> int:
        """Expire every pending link of the merchant whose deadline has passed."""
        try:
            result = self.session.execute(
                update(PaymentLink)
                .where(
                    PaymentLink.merchant_id == merchant_id,
                    PaymentLink.status == LinkStatus.PENDING.value,
                    PaymentLink.expires_at < now,
                )
                .values(status=LinkStatus.EXPIRED.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            log.critical(
                "Failed to expire overdue payment links",
                merchant_id=str(merchant_id),
                error=str(e),
            )
            raise DatabaseError("Failed to expire overdue payment links") from e

        if result.rowcount:
            log.info(
                "Expired overdue payment links",
                merchant_id=str(merchant_id),
                count=result.rowcount,
            )
        return result.rowcount

    def count_all(self, merchant_id: UUID) -> int:
        return self.session.exec(
            select(func.count())
            .select_from(PaymentLink)
            .where(PaymentLink.merchant_id == merchant_id)
        ).one()

    def count_by_status(self, merchant_id: UUID, status: str) -> int:
        return self.session.exec(
            select(func.count())
            .select_from(PaymentLink)
            .where(
                PaymentLink.merchant_id == merchant_id,
                PaymentLink.status == status,
            )
        ).one()

    def count_created_today(self, merchant_id: UUID, now: datetime = None) -> int:
        now = now or utcnow()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return self.session.exec(
            select(func.count())
            .select_from(PaymentLink)
            .where(
                PaymentLink.merchant_id == merchant_id,
                PaymentLink.created_at >= start_of_day,
            )
        ).one()

    # Gateway-side lookups, not merchant scoped

    def find_by_transaction_id(self, transaction_id: str) -> Optional[PaymentLink]:
        return self.session.exec(
            select(PaymentLink).where(
                PaymentLink.payment_transaction_id == transaction_id
            )
        ).first()

    def find_by_external_reference(
        self, external_reference: str
    ) -> Optional[PaymentLink]:
        return self.session.exec(
            select(PaymentLink).where(
                PaymentLink.external_reference == external_reference
            )
        ).first()

    def find_by_gateway_reference_id(
        self, gateway_reference_id: str
    ) -> Optional[PaymentLink]:
        return self.session.exec(
            select(PaymentLink).where(
                PaymentLink.gateway_reference_id == gateway_reference_id
            )
        ).first()

    def reload(self, link: PaymentLink) -> PaymentLink:
        """Re-read a link after a conditional update changed its row."""
        self.session.refresh(link)
        return link
