# src/infrastructure/clients/mercadopago_client.py

import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import uuid4

from httpx import (
    AsyncBaseTransport,
    AsyncClient,
    HTTPStatusError,
    RequestError,
    TimeoutException,
)

from shared.libs.observability.metrics import GATEWAY_REQUEST_DURATION
from src.config.config import GatewayConfig
from src.config.logger_config import log
from src.core.exceptions import (
    GatewayAuthError,
    GatewayError,
    GatewayUnavailableError,
    GatewayValidationError,
    PaymentNotFoundError,
)


@dataclass(frozen=True)
class PayerInfo:
    email: str
    name: str
    tax_id: Optional[str] = None


@dataclass(frozen=True)
class GatewayPreference:
    """Result of creating a checkout preference."""

    gateway_reference_id: str
    payment_url: str
    sandbox_url: Optional[str]
    expires_at: datetime


@dataclass(frozen=True)
class GatewayPaymentStatus:
    """Raw payment state as reported by Mercado Pago."""

    payment_id: str
    status: str
    status_detail: Optional[str]
    payment_method: Optional[str]
    transaction_amount: Optional[Decimal]
    payer_email: Optional[str]
    approved_at: Optional[datetime]
    external_reference: Optional[str] = None


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        log.warning("Unparseable gateway timestamp", value=value)
        return None


class MercadoPagoClient:
    """
    Client for the Mercado Pago REST API.
    Pure translation layer: holds no state besides configuration and maps
    every transport or HTTP failure to a GatewayError subclass.
    """

    def __init__(
        self,
        gateway_config: GatewayConfig,
        transport: Optional[AsyncBaseTransport] = None,
    ):
        """
        Args:
            gateway_config: Base URL, timeout, callback URLs and link settings.
            transport: Optional httpx transport, used to stub the API in tests.
        """
        self.config = gateway_config
        self.base_url = gateway_config.base_url.rstrip("/")
        self.timeout = gateway_config.timeout
        self._transport = transport

    async def _make_request(
        self,
        operation: str,
        method: str,
        url: str,
        access_token: str,
        not_found_error: Optional[type] = None,
        **kwargs,
    ) -> Dict[str, Any]:
        """
        Make an authenticated request and map failures to domain errors.

        Raises:
            GatewayAuthError: On 401/403.
            GatewayValidationError: On 400/422 and other client errors.
            PaymentNotFoundError: On 404 when `not_found_error` asks for it.
            GatewayUnavailableError: On timeouts, network errors, 5xx and bad bodies.
        """
        headers = {
            "accept": "application/json",
            "Authorization": f"Bearer {access_token}",
            "X-Idempotency-Key": str(uuid4()),
        }
        outcome = "error"
        start_time = time.perf_counter()

        try:
            async with AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
                response.raise_for_status()
                try:
                    data = response.json()
                except ValueError as e:
                    log.critical(
                        "Non-JSON response from Mercado Pago", url=url, error=str(e)
                    )
                    raise GatewayUnavailableError(
                        "Invalid response from payment gateway", e
                    ) from e
                outcome = "success"
                return data

        except TimeoutException as e:
            log.critical("Timeout calling Mercado Pago", url=url)
            raise GatewayUnavailableError(
                "Payment gateway did not respond in time", e
            ) from e

        except HTTPStatusError as e:
            status_code = e.response.status_code
            response_text = e.response.text
            gateway_message = self._extract_message(e.response)

            log.warning(
                "HTTP error from Mercado Pago",
                url=url,
                status_code=status_code,
                response=response_text[:500],
            )

            if status_code in (401, 403):
                raise GatewayAuthError("Invalid Mercado Pago credentials", e) from e

            if status_code == 404 and not_found_error is not None:
                raise not_found_error(
                    f"Not found at payment gateway: {gateway_message}", e
                ) from e

            if status_code >= 500:
                raise GatewayUnavailableError(
                    f"Payment gateway error: {status_code}", e
                ) from e

            raise GatewayValidationError(
                f"Mercado Pago rejected the request: {gateway_message}", e
            ) from e

        except RequestError as e:
            log.critical(
                "Connection error calling Mercado Pago", url=url, error=str(e)
            )
            raise GatewayUnavailableError(
                "Could not connect to the payment gateway. Try again.", e
            ) from e

        except GatewayError:
            raise

        except Exception as e:
            log.critical(
                "Unexpected error calling Mercado Pago", url=url, error=str(e)
            )
            raise GatewayUnavailableError(
                "Unexpected error talking to the payment gateway", e
            ) from e

        finally:
            GATEWAY_REQUEST_DURATION.labels(
                operation=operation, outcome=outcome
            ).observe(time.perf_counter() - start_time)

    @staticmethod
    def _extract_message(response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200] or "invalid request"
        if isinstance(body, dict):
            return str(body.get("message") or body.get("error") or "invalid request")
        return "invalid request"

    def _build_preference(
        self,
        description: str,
        amount: Decimal,
        payer: PayerInfo,
        external_reference: str,
        expires_at: datetime,
    ) -> Dict[str, Any]:
        payer_body: Dict[str, Any] = {"email": payer.email, "name": payer.name}
        tax_id = re.sub(r"\D", "", payer.tax_id or "")
        if tax_id:
            payer_body["identification"] = {"type": "CPF", "number": tax_id}

        app_url = self.config.app_url
        return {
            "items": [
                {
                    "id": external_reference,
                    "title": description,
                    "description": f"Pagamento: {description}",
                    "quantity": 1,
                    "unit_price": float(amount),
                    "currency_id": self.config.currency,
                }
            ],
            "payer": payer_body,
            "payment_methods": {
                "excluded_payment_methods": [
                    {"id": method} for method in self.config.excluded_payment_methods
                ],
                "installments": 1,
            },
            "expires": True,
            "expiration_date_to": expires_at.isoformat(),
            "external_reference": external_reference,
            "back_urls": {
                "success": f"{app_url}/payment/success",
                "failure": f"{app_url}/payment/failure",
                "pending": f"{app_url}/payment/pending",
            },
            "notification_url": self.config.notification_url,
            "statement_descriptor": description[:22],
            # PIX settles asynchronously, so pending states must be allowed
            "binary_mode": False,
        }

    async def create_link(
        self,
        access_token: str,
        description: str,
        amount: Decimal,
        payer: PayerInfo,
        external_reference: str,
    ) -> GatewayPreference:
        """
        Create a checkout preference for a single item.

        Returns:
            GatewayPreference with the preference id, checkout URLs and expiry.
        Raises:
            GatewayAuthError, GatewayValidationError, GatewayUnavailableError.
        """
        expires_at = datetime.now(timezone.utc) + timedelta(
            hours=self.config.validity_hours
        )
        body = self._build_preference(
            description, amount, payer, external_reference, expires_at
        )

        log.info(
            "Creating Mercado Pago preference",
            external_reference=external_reference,
            amount=str(amount),
        )
        data = await self._make_request(
            "create_link",
            "POST",
            f"{self.base_url}/checkout/preferences",
            access_token,
            json=body,
        )

        if not data.get("id") or not data.get("init_point"):
            log.critical(
                "Mercado Pago preference response missing fields",
                external_reference=external_reference,
            )
            raise GatewayUnavailableError("Invalid response from payment gateway")

        log.info(
            "Mercado Pago preference created",
            preference_id=data["id"],
            external_reference=external_reference,
        )
        return GatewayPreference(
            gateway_reference_id=str(data["id"]),
            payment_url=data["init_point"],
            sandbox_url=data.get("sandbox_init_point"),
            expires_at=expires_at,
        )

    async def get_payment_status(
        self, access_token: str, payment_transaction_id: str
    ) -> GatewayPaymentStatus:
        """
        Fetch the authoritative state of a payment.
        The raw gateway status is returned untouched.

        Raises:
            PaymentNotFoundError: If the gateway has no such payment.
            GatewayAuthError, GatewayValidationError, GatewayUnavailableError.
        """
        log.debug("Fetching payment status", payment_id=payment_transaction_id)
        data = await self._make_request(
            "get_payment_status",
            "GET",
            f"{self.base_url}/v1/payments/{payment_transaction_id}",
            access_token,
            not_found_error=PaymentNotFoundError,
        )

        if not data.get("status"):
            raise GatewayUnavailableError("Payment response without status")

        payer = data.get("payer") or {}
        amount = data.get("transaction_amount")
        status = GatewayPaymentStatus(
            payment_id=str(data.get("id", payment_transaction_id)),
            status=data["status"],
            status_detail=data.get("status_detail"),
            payment_method=data.get("payment_method_id"),
            transaction_amount=Decimal(str(amount)) if amount is not None else None,
            payer_email=payer.get("email"),
            approved_at=_parse_timestamp(data.get("date_approved")),
            external_reference=data.get("external_reference"),
        )
        log.info(
            "Payment status fetched",
            payment_id=status.payment_id,
            status=status.status,
            status_detail=status.status_detail,
        )
        return status

    async def expire_preference(
        self, access_token: str, gateway_reference_id: str
    ) -> None:
        """Make a preference unusable by moving its expiration to now."""
        log.info("Expiring Mercado Pago preference", preference_id=gateway_reference_id)
        await self._make_request(
            "expire_preference",
            "PUT",
            f"{self.base_url}/checkout/preferences/{gateway_reference_id}",
            access_token,
            json={
                "expires": True,
                "expiration_date_to": datetime.now(timezone.utc).isoformat(),
            },
        )
