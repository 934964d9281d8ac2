# src/application/webhook_reconciler.py

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from sqlmodel import Session

from shared.libs.observability.metrics import WEBHOOK_NOTIFICATIONS
from src.application.link_lifecycle import LinkLifecycle
from src.config.logger_config import log
from src.core.exceptions import (
    CredentialError,
    DatabaseError,
    MerchantNotFoundError,
)
from src.domain.models import LinkStatus, PaymentLink, WebhookNotification
from src.infrastructure.clients.mercadopago_client import (
    GatewayPaymentStatus,
    MercadoPagoClient,
)
from src.infrastructure.crypto.credential_store import CredentialStore
from src.infrastructure.database.repositories.merchant_repository import (
    MerchantRepository,
)
from src.infrastructure.database.repositories.payment_link_repository import (
    PaymentLinkRepository,
    SettlementFields,
)
from src.infrastructure.database.repositories.webhook_notification_repository import (
    WebhookNotificationRepository,
)
from src.infrastructure.realtime.notifier import RealtimeNotifier

# Raw Mercado Pago payment status -> link status
GATEWAY_STATUS_MAP: Dict[str, str] = {
    "approved": LinkStatus.PAID.value,
    "pending": LinkStatus.PENDING.value,
    "in_process": LinkStatus.PENDING.value,
    "rejected": LinkStatus.CANCELLED.value,
    "cancelled": LinkStatus.CANCELLED.value,
}

PAYMENT_TYPE = "payment"

# Reconciliation outcomes, also used as metric labels
IGNORED = "ignored"
UNRESOLVED = "unresolved"
UNCHANGED = "unchanged"
APPLIED = "applied"
REJECTED = "rejected"
FAILED = "failed"


@dataclass(frozen=True)
class GatewayNotification:
    """A gateway callback reduced to the fields reconciliation needs."""

    type: str
    data_id: str
    notification_id: Optional[str] = None
    action: Optional[str] = None
    external_reference: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def audit_id(self, reported_status: str) -> str:
        """Id used for the audit row; derived when the gateway sent none."""
        if self.notification_id:
            return self.notification_id
        return f"{self.type}:{self.data_id}:{reported_status}"


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_notification(
    payload: Any, query_params: Optional[Mapping[str, str]] = None
) -> Optional[GatewayNotification]:
    """
    Extract type and transaction id from a gateway callback.

    Understands the JSON body form `{id, type, action, data: {id}}` and the
    query forms `?type=payment&data.id=...` and `?topic=payment&id=...`.

    Returns:
        GatewayNotification, or None when the type or the transaction id
        cannot be found.
    """
    body = payload if isinstance(payload, dict) else {}
    query = dict(query_params or {})

    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    notification_type = _clean(
        body.get("type") or body.get("topic") or query.get("type") or query.get("topic")
    )

    data_id = _clean(data.get("id")) or _clean(query.get("data.id"))
    if data_id is None and (body.get("topic") or query.get("topic")):
        # Legacy IPN: the payment id travels as `id` or as a resource URL
        resource = _clean(body.get("resource"))
        data_id = _clean(query.get("id")) or (
            resource.rstrip("/").rsplit("/", 1)[-1] if resource else None
        )

    if not notification_type or not data_id:
        return None

    notification_id = None
    if "data" in body:
        notification_id = _clean(body.get("id"))

    raw = dict(body)
    if query:
        raw["_query"] = query

    return GatewayNotification(
        type=notification_type,
        data_id=data_id,
        notification_id=notification_id,
        action=_clean(body.get("action")),
        external_reference=_clean(body.get("external_reference")),
        raw=raw,
    )


class WebhookReconciler:
    """
    Turns gateway notifications into at most one link transition per
    logical status change.

    The notification body is only used to find the link; the status applied
    always comes from a fresh gateway query. `handle` never raises: every
    failure is logged and reported as an outcome so the route can still
    acknowledge the gateway.
    """

    def __init__(
        self,
        session: Session,
        gateway_client: MercadoPagoClient,
        credential_store: CredentialStore,
        notifier: RealtimeNotifier,
    ):
        self.session = session
        self.gateway_client = gateway_client
        self.credential_store = credential_store
        self.notifier = notifier
        self.links = PaymentLinkRepository(session)
        self.merchants = MerchantRepository(session)
        self.notifications = WebhookNotificationRepository(session)
        self.lifecycle = LinkLifecycle(self.links)

    async def handle(
        self, payload: Any, query_params: Optional[Mapping[str, str]] = None
    ) -> str:
        """Process one delivery and return its outcome label."""
        notification = parse_notification(payload, query_params)
        if notification is None:
            log.info("Webhook without type or transaction id, acknowledging")
            return self._count(IGNORED)

        if notification.type != PAYMENT_TYPE:
            log.info(
                "Webhook type not handled, acknowledging",
                notification_type=notification.type,
                data_id=notification.data_id,
            )
            return self._count(IGNORED)

        log.info(
            "Payment webhook received",
            data_id=notification.data_id,
            action=notification.action,
            notification_id=notification.notification_id,
        )

        try:
            link = self.resolve_link(notification)
            if link is None:
                log.warning(
                    "No payment link matches webhook, dropping",
                    data_id=notification.data_id,
                    external_reference=notification.external_reference,
                )
                return self._count(UNRESOLVED)

            link = self.lifecycle.refresh(link)
            access_token = self.merchant_access_token(link)
            gateway_status = await self.gateway_client.get_payment_status(
                access_token, notification.data_id
            )
            outcome = self.apply_gateway_status(link, gateway_status, notification)
            return self._count(outcome)

        except Exception as e:
            self.session.rollback()
            log.error(
                "Webhook processing failed, acknowledging anyway",
                data_id=notification.data_id,
                notification_id=notification.notification_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return self._count(FAILED)

    def resolve_link(self, notification: GatewayNotification) -> Optional[PaymentLink]:
        """
        Find the link a notification refers to. First match wins:
        stored transaction id, external reference equal to the data id,
        the payload's own external reference, then the preference id.
        """
        data_id = notification.data_id

        link = self.links.find_by_transaction_id(data_id)
        if link is not None:
            log.debug("Webhook resolved by transaction id", link_id=str(link.id))
            return link

        link = self.links.find_by_external_reference(data_id)
        if link is not None:
            log.debug("Webhook resolved by external reference", link_id=str(link.id))
            return link

        if notification.external_reference:
            link = self.links.find_by_external_reference(
                notification.external_reference
            )
            if link is not None:
                log.debug(
                    "Webhook resolved by payload external reference",
                    link_id=str(link.id),
                )
                return link

        link = self.links.find_by_gateway_reference_id(data_id)
        if link is not None:
            log.debug("Webhook resolved by preference id", link_id=str(link.id))
        return link

    def merchant_access_token(self, link: PaymentLink) -> str:
        """
        Raises:
            MerchantNotFoundError: If the owning merchant is gone.
            CredentialError: If it has no gateway token or it cannot be decrypted.
        """
        merchant = self.merchants.get_by_id(link.merchant_id)
        if merchant is None:
            raise MerchantNotFoundError(f"Merchant {link.merchant_id} not found")
        if not merchant.access_token:
            raise CredentialError("Merchant has no gateway credentials configured")
        return self.credential_store.decrypt(merchant.access_token)

    def apply_gateway_status(
        self,
        link: PaymentLink,
        gateway_status: GatewayPaymentStatus,
        notification: Optional[GatewayNotification] = None,
    ) -> str:
        """
        Reconcile a link with the gateway's view of one of its payments.

        Shared by webhook processing and explicit status checks; an audit
        row is only written when a notification is given.
        """
        target = GATEWAY_STATUS_MAP.get(gateway_status.status)
        if target is None:
            log.info(
                "Gateway status not mapped, ignoring",
                link_id=str(link.id),
                gateway_status=gateway_status.status,
                status_detail=gateway_status.status_detail,
            )
            return IGNORED

        if link.status == LinkStatus.PENDING.value and self.links.record_transaction_id(
            link.id, gateway_status.payment_id
        ):
            self.links.reload(link)
            log.info(
                "Payment transaction id recorded",
                link_id=str(link.id),
                payment_id=gateway_status.payment_id,
            )

        if target == link.status:
            log.info(
                "Link already in gateway status, nothing to apply",
                link_id=str(link.id),
                status=link.status,
            )
            return UNCHANGED

        if not LinkLifecycle.can_transition(link.status, target):
            log.warning(
                "Gateway status conflicts with terminal link, leaving it",
                link_id=str(link.id),
                status=link.status,
                gateway_status=gateway_status.status,
            )
            return REJECTED

        previous_status = link.status
        settlement = SettlementFields(
            payment_transaction_id=gateway_status.payment_id,
            payment_method=gateway_status.payment_method,
            payer_confirmed_email=gateway_status.payer_email,
            paid_at=gateway_status.approved_at,
        )
        if not self.lifecycle.transition(link, target, settlement):
            log.info(
                "Transition already applied by another writer",
                link_id=str(link.id),
                status=link.status,
            )
            return UNCHANGED

        log.info(
            "Payment link reconciled",
            link_id=str(link.id),
            from_status=previous_status,
            to_status=link.status,
            payment_id=gateway_status.payment_id,
        )

        # The transition is committed; subscribers hear about it even if the
        # audit write below fails.
        self._publish(link, previous_status)

        if notification is not None:
            try:
                self._record_notification(link, notification, gateway_status.status)
            except DatabaseError as e:
                log.error(
                    "Audit row not stored for applied transition",
                    link_id=str(link.id),
                    data_id=notification.data_id,
                    error=str(e),
                )
        return APPLIED

    def _record_notification(
        self,
        link: PaymentLink,
        notification: GatewayNotification,
        reported_status: str,
    ) -> None:
        audit_id = notification.audit_id(reported_status)
        if self.notifications.find_by_gateway_id(audit_id) is not None:
            log.info(
                "Webhook notification already recorded",
                gateway_notification_id=audit_id,
            )
            return

        self.notifications.append(
            WebhookNotification(
                link_id=link.id,
                gateway_notification_id=audit_id,
                notification_type=notification.type,
                reported_status=reported_status,
                raw_payload=json.dumps(notification.raw, default=str),
            )
        )

    def _publish(self, link: PaymentLink, previous_status: str) -> None:
        payload = {
            "link_id": str(link.id),
            "external_reference": link.external_reference,
            "status": link.status,
            "previous_status": previous_status,
            "amount": str(link.amount),
            "description": link.description,
            "payment_method": link.payment_method,
            "paid_at": link.paid_at.isoformat() if link.paid_at else None,
        }
        self.notifier.publish(link.merchant_id, "payment_update", payload)
        if link.status == LinkStatus.PAID.value:
            self.notifier.publish(link.merchant_id, "payment_completed", payload)

    @staticmethod
    def _count(outcome: str) -> str:
        WEBHOOK_NOTIFICATIONS.labels(outcome=outcome).inc()
        return outcome
