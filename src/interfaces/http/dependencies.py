from uuid import UUID

from fastapi import Depends

from src.config.config import config
from src.infrastructure.clients.mercadopago_client import MercadoPagoClient
from src.infrastructure.crypto.credential_store import CredentialStore
from src.infrastructure.realtime.notifier import RealtimeNotifier
from src.infrastructure.services import (
    credential_store,
    gateway_client,
    jwt_service,
    realtime_notifier,
)


def get_gateway_client() -> MercadoPagoClient:
    """Dependency to get the Mercado Pago client."""
    return gateway_client


def get_credential_store() -> CredentialStore:
    return credential_store


def get_notifier() -> RealtimeNotifier:
    """Dependency to get the process-wide realtime notifier."""
    return realtime_notifier


def get_test_mode() -> bool:
    return config.GATEWAY_TEST_MODE


def get_current_merchant_id(
    merchant_id: UUID = Depends(jwt_service.get_current_merchant_id),
) -> UUID:
    """Authenticated merchant id from the bearer token (header or ?token=)."""
    return merchant_id
