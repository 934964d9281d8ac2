from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from src.domain.models import PaymentLink, as_utc


# ------------------------
# Merchants
# ------------------------
class MerchantCreate(BaseModel):
    """
    Schema for merchant registration input.
    Field rules are enforced by MerchantService so failures map to 400.
    """

    name: str
    email: str
    password: str
    access_token: str = Field(..., description="Mercado Pago access token")
    public_key: str = Field(..., description="Mercado Pago public key")
    store_name: Optional[str] = None


class MerchantLogin(BaseModel):
    email: str
    password: str


class CredentialsUpdate(BaseModel):
    """Schema for replacing the merchant's Mercado Pago credentials."""

    access_token: str
    public_key: str

    model_config = {"extra": "forbid"}


class MerchantResponse(BaseModel):
    """
    Schema for merchant output (excludes password hash and access token).
    """

    id: UUID
    name: str
    email: str
    store_name: str
    public_key: Optional[str] = None
    gateway_configured: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class AuthResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int  # in seconds
    merchant: MerchantResponse


# ------------------------
# Payment links
# ------------------------
class PaymentLinkCreate(BaseModel):
    """
    Schema for creating a payment link.
    All fields are optional here; PaymentLinkService validates them and
    reports every problem as a 400.
    """

    title: Optional[str] = None
    amount: Optional[Decimal] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_cpf: Optional[str] = None


class PaymentLinkResponse(BaseModel):
    """
    Schema for returning a payment link. `payment_url` is the checkout URL
    for the configured gateway mode (sandbox or production).
    """

    id: UUID
    description: str
    amount: float
    status: str
    external_reference: str
    preference_id: Optional[str] = None
    payment_url: Optional[str] = None
    payment_transaction_id: Optional[str] = None
    payer_email: str
    payer_name: str
    payer_tax_id: Optional[str] = None
    payment_method: Optional[str] = None
    payer_confirmed_email: Optional[str] = None
    expires_at: datetime
    created_at: datetime
    paid_at: Optional[datetime] = None

    @classmethod
    def from_link(cls, link: PaymentLink, test_mode: bool) -> "PaymentLinkResponse":
        return cls(
            id=link.id,
            description=link.description,
            amount=float(link.amount),
            status=link.status,
            external_reference=link.external_reference,
            preference_id=link.gateway_reference_id,
            payment_url=link.checkout_url(test_mode),
            payment_transaction_id=link.payment_transaction_id,
            payer_email=link.payer_email,
            payer_name=link.payer_name,
            payer_tax_id=link.payer_tax_id,
            payment_method=link.payment_method,
            payer_confirmed_email=link.payer_confirmed_email,
            expires_at=as_utc(link.expires_at),
            created_at=as_utc(link.created_at),
            paid_at=as_utc(link.paid_at),
        )


class PaymentLinkCreateResponse(BaseModel):
    link: str = Field(..., description="Checkout URL to share with the payer")
    id: UUID
    external_reference: str
    preference_id: Optional[str] = None
    expires_at: datetime
    message: str = "Payment link created"


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    hasMore: bool


class PaymentLinkListResponse(BaseModel):
    links: List[PaymentLinkResponse]
    pagination: Pagination


class PaymentLinkDetailResponse(BaseModel):
    link: PaymentLinkResponse


class PaymentLinkActionResponse(BaseModel):
    """Result of cancel and check-status calls."""

    message: str
    link: PaymentLinkResponse
    gateway_status: Optional[str] = None


class PaymentLinkStats(BaseModel):
    total: int
    paid: int
    today: int
