from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlmodel import Session

from src.application.payment_link_service import PaymentLinkService
from src.config.logger_config import log
from src.core.exceptions import (
    CredentialError,
    GatewayAuthError,
    GatewayError,
    GatewayUnavailableError,
    GatewayValidationError,
    InvalidTransitionError,
    MerchantNotFoundError,
    PaymentLinkNotFoundError,
    PaymentNotFoundError,
    ValidationError,
)
from src.infrastructure.clients.mercadopago_client import MercadoPagoClient
from src.infrastructure.crypto.credential_store import CredentialStore
from src.infrastructure.database.session import get_session
from src.infrastructure.realtime.notifier import RealtimeNotifier
from src.interfaces.http.dependencies import (
    get_credential_store,
    get_current_merchant_id,
    get_gateway_client,
    get_notifier,
    get_test_mode,
)
from src.interfaces.http.schemas import (
    Pagination,
    PaymentLinkActionResponse,
    PaymentLinkCreate,
    PaymentLinkCreateResponse,
    PaymentLinkDetailResponse,
    PaymentLinkListResponse,
    PaymentLinkResponse,
    PaymentLinkStats,
)

router = APIRouter(prefix="/payment-links", tags=["payment-links"])


def get_payment_link_service(
    session: Session = Depends(get_session),
    gateway_client: MercadoPagoClient = Depends(get_gateway_client),
    credential_store: CredentialStore = Depends(get_credential_store),
    notifier: RealtimeNotifier = Depends(get_notifier),
) -> PaymentLinkService:
    """Dependency to build a PaymentLinkService for the request."""
    return PaymentLinkService(
        session=session,
        gateway_client=gateway_client,
        credential_store=credential_store,
        notifier=notifier,
    )


def _gateway_http_error(e: GatewayError) -> HTTPException:
    """Map a gateway failure to the response the merchant sees."""
    if isinstance(e, GatewayAuthError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Mercado Pago credentials. Check your access token.",
        )
    if isinstance(e, GatewayValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    if isinstance(e, GatewayUnavailableError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment gateway unavailable. Try again.",
        )
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY, detail="Payment gateway error"
    )


@router.post(
    "",
    response_model=PaymentLinkCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_payment_link(
    link_create: PaymentLinkCreate,
    merchant_id: UUID = Depends(get_current_merchant_id),
    service: PaymentLinkService = Depends(get_payment_link_service),
    test_mode: bool = Depends(get_test_mode),
):
    """
    Create a payment link for a customer.
    - Returns the checkout URL to share and the external reference
    - On success: returns 201 Created
    """
    try:
        log.info("Create payment link request", merchant_id=str(merchant_id))
        link = await service.create_link(merchant_id, link_create)

        return PaymentLinkCreateResponse(
            link=link.checkout_url(test_mode),
            id=link.id,
            external_reference=link.external_reference,
            preference_id=link.gateway_reference_id,
            expires_at=link.expires_at,
            message="Payment link created",
        )

    except ValidationError as e:
        log.warning("Payment link creation failed: invalid input", error=e.message)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=e.message
        ) from e

    except GatewayError as e:
        log.warning(
            "Payment link creation failed at the gateway",
            error_type=type(e).__name__,
            error=e.message,
        )
        raise _gateway_http_error(e) from e

    except CredentialError as e:
        log.error("Stored gateway credentials unreadable", merchant_id=str(merchant_id))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Stored Mercado Pago credentials are invalid. Update them.",
        ) from e

    except MerchantNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Merchant not found"
        ) from e

    except Exception as e:
        log.exception("Unexpected error during payment link creation")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from e


@router.get("", response_model=PaymentLinkListResponse)
async def list_payment_links(
    link_status: Optional[str] = Query(
        None,
        alias="status",
        description="Filter by status (pending, paid, expired, cancelled)",
    ),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    merchant_id: UUID = Depends(get_current_merchant_id),
    service: PaymentLinkService = Depends(get_payment_link_service),
    test_mode: bool = Depends(get_test_mode),
):
    """List the merchant's payment links, newest first."""
    try:
        links, total = service.list_links(
            merchant_id, status=link_status, limit=limit, offset=offset
        )
        return PaymentLinkListResponse(
            links=[PaymentLinkResponse.from_link(link, test_mode) for link in links],
            pagination=Pagination(
                total=total,
                limit=limit,
                offset=offset,
                hasMore=offset + len(links) < total,
            ),
        )

    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=e.message
        ) from e

    except Exception as e:
        log.exception("Unexpected error during list payment links")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from e


# Declared before /{link_id} so "stats" is not parsed as an id
@router.get("/stats", response_model=PaymentLinkStats)
async def payment_link_stats(
    merchant_id: UUID = Depends(get_current_merchant_id),
    service: PaymentLinkService = Depends(get_payment_link_service),
):
    try:
        return PaymentLinkStats(**service.stats(merchant_id))
    except Exception as e:
        log.exception("Unexpected error computing payment link stats")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from e


@router.get("/{link_id}", response_model=PaymentLinkDetailResponse)
async def get_payment_link(
    link_id: UUID = Path(..., description="The UUID of the payment link"),
    merchant_id: UUID = Depends(get_current_merchant_id),
    service: PaymentLinkService = Depends(get_payment_link_service),
    test_mode: bool = Depends(get_test_mode),
):
    try:
        link = service.get_link(link_id, merchant_id)
        return PaymentLinkDetailResponse(
            link=PaymentLinkResponse.from_link(link, test_mode)
        )

    except PaymentLinkNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Payment link not found"
        ) from e

    except Exception as e:
        log.exception("Unexpected error during get payment link")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from e


@router.patch("/{link_id}/cancel", response_model=PaymentLinkActionResponse)
async def cancel_payment_link(
    link_id: UUID = Path(..., description="The UUID of the payment link"),
    merchant_id: UUID = Depends(get_current_merchant_id),
    service: PaymentLinkService = Depends(get_payment_link_service),
    test_mode: bool = Depends(get_test_mode),
):
    """Cancel a pending payment link."""
    try:
        link = await service.cancel_link(link_id, merchant_id)
        return PaymentLinkActionResponse(
            message="Payment link cancelled",
            link=PaymentLinkResponse.from_link(link, test_mode),
        )

    except PaymentLinkNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Payment link not found"
        ) from e

    except InvalidTransitionError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=e.message
        ) from e

    except Exception as e:
        log.exception("Unexpected error during payment link cancellation")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from e


@router.post("/{link_id}/check-status", response_model=PaymentLinkActionResponse)
async def check_payment_link_status(
    link_id: UUID = Path(..., description="The UUID of the payment link"),
    merchant_id: UUID = Depends(get_current_merchant_id),
    service: PaymentLinkService = Depends(get_payment_link_service),
    test_mode: bool = Depends(get_test_mode),
):
    """
    Re-query Mercado Pago for the link's payment and apply the result.
    """
    try:
        link, gateway_status, outcome = await service.check_status(
            link_id, merchant_id
        )
        if gateway_status is None:
            message = "Payment not started yet"
        elif outcome == "applied":
            message = f"Status updated to {link.status}"
        else:
            message = "Status unchanged"

        return PaymentLinkActionResponse(
            message=message,
            link=PaymentLinkResponse.from_link(link, test_mode),
            gateway_status=gateway_status.status if gateway_status else None,
        )

    except PaymentLinkNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Payment link not found"
        ) from e

    except PaymentNotFoundError:
        log.warning("Payment not found at the gateway", link_id=str(link_id))
        link = service.get_link(link_id, merchant_id)
        return PaymentLinkActionResponse(
            message="Payment not found at the gateway",
            link=PaymentLinkResponse.from_link(link, test_mode),
        )

    except GatewayError as e:
        raise _gateway_http_error(e) from e

    except (ValidationError, CredentialError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=e.message
        ) from e

    except Exception as e:
        log.exception("Unexpected error during payment status check")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from e
