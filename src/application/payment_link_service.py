# src/application/payment_link_service.py

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, List, Optional, Tuple
from uuid import UUID, uuid4

from sqlmodel import Session

from shared.libs.observability.metrics import PAYMENT_LINKS_CREATED
from src.application.link_lifecycle import LinkLifecycle
from src.application.merchant_service import normalize_email
from src.application.webhook_reconciler import WebhookReconciler
from src.config.logger_config import log
from src.core.exceptions import (
    GatewayError,
    MerchantNotFoundError,
    PaymentLinkNotFoundError,
    ValidationError,
)
from src.domain.models import LinkStatus, Merchant, PaymentLink, utcnow
from src.infrastructure.clients.mercadopago_client import (
    GatewayPaymentStatus,
    MercadoPagoClient,
    PayerInfo,
)
from src.infrastructure.crypto.credential_store import CredentialStore
from src.infrastructure.database.repositories.merchant_repository import (
    MerchantRepository,
)
from src.infrastructure.database.repositories.payment_link_repository import (
    PaymentLinkRepository,
)
from src.infrastructure.realtime.notifier import RealtimeNotifier
from src.interfaces.http.schemas import PaymentLinkCreate

MAX_TITLE_LENGTH = 200
MIN_AMOUNT = Decimal("0.01")
MAX_AMOUNT = Decimal("10000.00")
MIN_CUSTOMER_NAME_LENGTH = 2
CPF_DIGITS = 11


class PaymentLinkService:
    """
    Service class for payment-link business logic.

    Orchestrates input validation, gateway calls, persistence through
    PaymentLinkRepository and the lifecycle rules of LinkLifecycle. Every
    merchant-facing read runs through the lazy expiry check.
    """

    def __init__(
        self,
        session: Session,
        gateway_client: MercadoPagoClient,
        credential_store: CredentialStore,
        notifier: RealtimeNotifier,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            session: SQLModel session for database operations.
            gateway_client: Mercado Pago adapter.
            credential_store: Decrypts the merchant's stored access token.
            notifier: Realtime channel registry for status pushes.
            clock: Source of the current time, replaceable in tests.
        """
        self.session = session
        self.gateway_client = gateway_client
        self.credential_store = credential_store
        self.notifier = notifier
        self.repository = PaymentLinkRepository(session)
        self.merchants = MerchantRepository(session)
        self.lifecycle = LinkLifecycle(self.repository, clock=clock)
        self.clock = clock

    # ------------------------
    # Validation
    # ------------------------
    def _validate_link_input(
        self, data: PaymentLinkCreate
    ) -> Tuple[str, Decimal, PayerInfo]:
        title = (data.title or "").strip()
        if not title:
            raise ValidationError("Title is required")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(
                f"Title must have at most {MAX_TITLE_LENGTH} characters"
            )

        if data.amount is None:
            raise ValidationError("Amount is required")
        try:
            amount = Decimal(data.amount).quantize(Decimal("0.01"))
        except InvalidOperation as e:
            raise ValidationError("Invalid amount", e) from e
        if amount < MIN_AMOUNT or amount > MAX_AMOUNT:
            raise ValidationError(
                f"Amount must be between {MIN_AMOUNT} and {MAX_AMOUNT}"
            )

        try:
            email = normalize_email(data.customer_email)
        except ValidationError as e:
            raise ValidationError("Invalid customer email", e) from e

        name = (data.customer_name or "").strip()
        if len(name) < MIN_CUSTOMER_NAME_LENGTH:
            raise ValidationError(
                f"Customer name must have at least {MIN_CUSTOMER_NAME_LENGTH} characters"
            )

        tax_id = None
        if data.customer_cpf:
            tax_id = re.sub(r"\D", "", data.customer_cpf)
            if len(tax_id) != CPF_DIGITS:
                raise ValidationError(f"CPF must have {CPF_DIGITS} digits")

        return title, amount, PayerInfo(email=email, name=name, tax_id=tax_id)

    def _merchant_access_token(self, merchant_id: UUID) -> str:
        merchant: Optional[Merchant] = self.merchants.get_by_id(merchant_id)
        if merchant is None:
            raise MerchantNotFoundError(f"Merchant with ID {merchant_id} not found")
        if not merchant.gateway_configured:
            raise ValidationError(
                "Configure your Mercado Pago credentials before creating links"
            )
        return self.credential_store.decrypt(merchant.access_token)

    # ------------------------
    # Operations
    # ------------------------
    async def create_link(
        self, merchant_id: UUID, data: PaymentLinkCreate
    ) -> PaymentLink:
        """
        Create a checkout preference at the gateway and store the link.

        Raises:
            ValidationError: On invalid input or missing credentials.
            GatewayAuthError, GatewayValidationError, GatewayUnavailableError.
            DatabaseError: If the link cannot be stored.
        """
        title, amount, payer = self._validate_link_input(data)
        access_token = self._merchant_access_token(merchant_id)
        external_reference = str(uuid4())

        log.info(
            "Creating payment link",
            merchant_id=str(merchant_id),
            amount=str(amount),
            external_reference=external_reference,
        )

        preference = await self.gateway_client.create_link(
            access_token,
            description=title,
            amount=amount,
            payer=payer,
            external_reference=external_reference,
        )

        link = PaymentLink(
            merchant_id=merchant_id,
            description=title,
            amount=amount,
            status=LinkStatus.PENDING.value,
            external_reference=external_reference,
            gateway_reference_id=preference.gateway_reference_id,
            payment_url=preference.payment_url,
            sandbox_url=preference.sandbox_url,
            payer_email=payer.email,
            payer_name=payer.name,
            payer_tax_id=payer.tax_id,
            expires_at=preference.expires_at,
        )
        link = self.repository.create(link)
        PAYMENT_LINKS_CREATED.inc()

        log.info(
            "Payment link created",
            link_id=str(link.id),
            preference_id=preference.gateway_reference_id,
        )
        return link

    def list_links(
        self,
        merchant_id: UUID,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[PaymentLink], int]:
        """
        List the merchant's links, newest first, after expiring overdue ones.
        Returns:
            Tuple of (links, total matching the filter).
        """
        if status is not None and status not in {s.value for s in LinkStatus}:
            raise ValidationError(f"Invalid status filter: {status}")

        self.lifecycle.expire_overdue(merchant_id)
        links, total = self.repository.list(
            merchant_id, status=status, limit=limit, offset=offset
        )
        links = self.lifecycle.refresh_all(links)
        log.debug(
            "Payment links listed",
            merchant_id=str(merchant_id),
            count=len(links),
            total=total,
        )
        return links, total

    def get_link(self, link_id: UUID, merchant_id: UUID) -> PaymentLink:
        """
        Raises:
            PaymentLinkNotFoundError: If the link does not exist for this merchant.
        """
        link = self.repository.find_by_id(link_id, merchant_id)
        if link is None:
            log.warning(
                "Payment link not found",
                link_id=str(link_id),
                merchant_id=str(merchant_id),
            )
            raise PaymentLinkNotFoundError(f"Payment link {link_id} not found")
        return self.lifecycle.refresh(link)

    async def cancel_link(self, link_id: UUID, merchant_id: UUID) -> PaymentLink:
        """
        Cancel a pending link, then expire its preference at the gateway.

        The gateway call is best-effort: the local cancellation stands even
        if Mercado Pago cannot be reached.

        Raises:
            PaymentLinkNotFoundError, InvalidTransitionError.
        """
        link = self.get_link(link_id, merchant_id)
        previous_status = link.status
        link = self.lifecycle.cancel(link)
        log.info("Payment link cancelled", link_id=str(link.id))

        self.notifier.publish(
            merchant_id,
            "payment_update",
            {
                "link_id": str(link.id),
                "external_reference": link.external_reference,
                "status": link.status,
                "previous_status": previous_status,
            },
        )

        if link.gateway_reference_id:
            try:
                access_token = self._merchant_access_token(merchant_id)
                await self.gateway_client.expire_preference(
                    access_token, link.gateway_reference_id
                )
            except Exception as e:
                log.warning(
                    "Could not expire preference at the gateway",
                    link_id=str(link.id),
                    preference_id=link.gateway_reference_id,
                    error=str(e),
                )
        return link

    async def check_status(
        self, link_id: UUID, merchant_id: UUID
    ) -> Tuple[PaymentLink, Optional[GatewayPaymentStatus], str]:
        """
        Re-query the gateway for the link's latest payment and reconcile.

        Returns:
            Tuple of (link, gateway status or None, reconciliation outcome).
            The gateway status is None when no payment was started yet.
        Raises:
            PaymentLinkNotFoundError: If the link does not exist for this merchant.
            GatewayError: If the gateway query fails.
        """
        link = self.get_link(link_id, merchant_id)
        if not link.payment_transaction_id:
            log.info("No payment started for link yet", link_id=str(link.id))
            return link, None, "not_started"

        access_token = self._merchant_access_token(merchant_id)
        try:
            gateway_status = await self.gateway_client.get_payment_status(
                access_token, link.payment_transaction_id
            )
        except GatewayError:
            log.warning(
                "Gateway status check failed",
                link_id=str(link.id),
                payment_id=link.payment_transaction_id,
            )
            raise

        reconciler = WebhookReconciler(
            session=self.session,
            gateway_client=self.gateway_client,
            credential_store=self.credential_store,
            notifier=self.notifier,
        )
        outcome = reconciler.apply_gateway_status(link, gateway_status)
        return link, gateway_status, outcome

    def stats(self, merchant_id: UUID) -> dict:
        self.lifecycle.expire_overdue(merchant_id)
        return {
            "total": self.repository.count_all(merchant_id),
            "paid": self.repository.count_by_status(
                merchant_id, LinkStatus.PAID.value
            ),
            "today": self.repository.count_created_today(merchant_id, self.clock()),
        }
