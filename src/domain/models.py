from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, Numeric, Text
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class LinkStatus(str, Enum):
    """Lifecycle states of a payment link. Only `pending` is non-terminal."""

    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {LinkStatus.PAID.value, LinkStatus.EXPIRED.value, LinkStatus.CANCELLED.value}
)


class Merchant(SQLModel, table=True):
    """
    A merchant account and its Mercado Pago credentials.

    The access token is stored encrypted (see CredentialStore); the public
    key is not sensitive and is stored as given.
    """

    __tablename__ = "merchants"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        index=True,
        nullable=False,
    )

    name: str = Field(max_length=120, nullable=False)

    email: str = Field(max_length=255, unique=True, index=True, nullable=False)

    hashed_password: str = Field(max_length=255, nullable=False)

    store_name: str = Field(max_length=120, nullable=False)

    access_token: Optional[str] = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
        description="Encrypted gateway access token (iv:ciphertext, hex)",
    )

    public_key: Optional[str] = Field(default=None, max_length=255)

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=utcnow),
    )

    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            default=utcnow,
            onupdate=utcnow,
        ),
    )

    @property
    def gateway_configured(self) -> bool:
        return bool(self.access_token)


class PaymentLink(SQLModel, table=True):
    """
    A merchant-issued request for a specific amount, exposed to the payer as
    a Mercado Pago checkout URL.

    Attributes:
        id: Unique identifier of the link (UUID, primary key).
        merchant_id: Owning merchant; every merchant-facing read filters on it.
        description: Title shown to the payer.
        amount: Amount in the configured currency (NUMERIC(10,2)).
        status: One of LinkStatus; transitions only out of `pending`.
        external_reference: Correlation token sent to the gateway (unique).
        gateway_reference_id: Mercado Pago preference id.
        payment_url: Production checkout URL (init_point).
        sandbox_url: Sandbox checkout URL (sandbox_init_point).
        payment_transaction_id: Latest gateway payment id seen for the link.
        payer_email / payer_name / payer_tax_id: Customer data given at creation.
        payment_method / payer_confirmed_email: Filled on settlement.
        expires_at: Creation time plus the validity window.
        paid_at: Set once, on transition into `paid`.
    """

    __tablename__ = "payment_links"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        index=True,
        nullable=False,
    )

    merchant_id: UUID = Field(foreign_key="merchants.id", index=True, nullable=False)

    description: str = Field(max_length=200, nullable=False)

    amount: Decimal = Field(
        sa_column=Column(Numeric(10, 2), nullable=False),
        description="Link amount",
    )

    status: str = Field(
        default=LinkStatus.PENDING.value,
        max_length=20,
        index=True,
        nullable=False,
    )

    external_reference: str = Field(
        max_length=64, unique=True, index=True, nullable=False
    )

    gateway_reference_id: Optional[str] = Field(
        default=None, max_length=255, index=True
    )

    payment_url: Optional[str] = Field(default=None, sa_column=Column(Text))

    sandbox_url: Optional[str] = Field(default=None, sa_column=Column(Text))

    payment_transaction_id: Optional[str] = Field(
        default=None, max_length=255, index=True
    )

    payer_email: str = Field(max_length=255, nullable=False)

    payer_name: str = Field(max_length=255, nullable=False)

    payer_tax_id: Optional[str] = Field(default=None, max_length=20)

    payment_method: Optional[str] = Field(default=None, max_length=50)

    payer_confirmed_email: Optional[str] = Field(default=None, max_length=255)

    expires_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(
            DateTime(timezone=True), nullable=False, default=utcnow, index=True
        ),
    )

    paid_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )

    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            default=utcnow,
            onupdate=utcnow,
        ),
    )

    def checkout_url(self, test_mode: bool) -> Optional[str]:
        if test_mode and self.sandbox_url:
            return self.sandbox_url
        return self.payment_url


class WebhookNotification(SQLModel, table=True):
    """
    Append-only audit row written when a gateway notification changed a link.
    `link_id` is nullable so that rows stay valid for unresolved deliveries.
    """

    __tablename__ = "webhook_notifications"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        index=True,
        nullable=False,
    )

    link_id: Optional[UUID] = Field(
        default=None, foreign_key="payment_links.id", index=True
    )

    gateway_notification_id: str = Field(
        max_length=255, unique=True, index=True, nullable=False
    )

    notification_type: str = Field(max_length=50, nullable=False)

    reported_status: Optional[str] = Field(default=None, max_length=50)

    raw_payload: str = Field(sa_column=Column(Text, nullable=False))

    received_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=utcnow),
    )
