from typing import Optional

from sqlmodel import Session, select

from src.config.logger_config import log
from src.core.exceptions import DatabaseError
from src.domain.models import WebhookNotification


class WebhookNotificationRepository:
    """Append-only log of gateway notifications that changed a link."""

    def __init__(self, session: Session):
        self.session = session

    def find_by_gateway_id(
        self, gateway_notification_id: str
    ) -> Optional[WebhookNotification]:
        return self.session.exec(
            select(WebhookNotification).where(
                WebhookNotification.gateway_notification_id == gateway_notification_id
            )
        ).first()

    def append(self, notification: WebhookNotification) -> WebhookNotification:
        try:
            self.session.add(notification)
            self.session.commit()
            self.session.refresh(notification)
        except Exception as e:
            self.session.rollback()
            log.critical(
                "Failed to store webhook notification",
                gateway_notification_id=notification.gateway_notification_id,
                error=str(e),
            )
            raise DatabaseError("Failed to store webhook notification") from e

        log.debug(
            "Webhook notification stored",
            notification_id=str(notification.id),
            link_id=str(notification.link_id),
        )
        return notification
