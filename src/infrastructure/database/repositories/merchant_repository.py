from typing import Optional
from uuid import UUID

from sqlmodel import Session, select

from src.config.logger_config import log
from src.core.exceptions import DatabaseError
from src.domain.models import Merchant, utcnow


class MerchantRepository:
    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, merchant_id: UUID) -> Optional[Merchant]:
        try:
            return self.session.get(Merchant, merchant_id)
        except Exception as e:
            log.critical(
                "Database error during merchant lookup",
                merchant_id=str(merchant_id),
                error=str(e),
            )
            raise DatabaseError("Failed to retrieve merchant") from e

    def get_by_email(self, email: str) -> Optional[Merchant]:
        return self.session.exec(
            select(Merchant).where(Merchant.email == email.lower())
        ).first()

    def save(self, merchant: Merchant) -> Merchant:
        merchant.updated_at = utcnow()
        try:
            self.session.add(merchant)
            self.session.commit()
            self.session.refresh(merchant)
            return merchant
        except Exception as e:
            self.session.rollback()
            log.error(
                "Failed to commit merchant to database",
                email=merchant.email,
                error=str(e),
            )
            raise DatabaseError("Failed to save merchant") from e
