"""
Centralized service instances for the payment-links service.
Ensures single, shared instances of JWTService, CredentialStore, etc.
"""

from src.config.config import config
from src.infrastructure.clients.mercadopago_client import MercadoPagoClient
from src.infrastructure.crypto.credential_store import CredentialStore
from src.infrastructure.jwt import JWTService
from src.infrastructure.realtime.notifier import RealtimeNotifier

# Single shared instances (singleton pattern)
jwt_service = JWTService(config=config.jwt_config)
credential_store = CredentialStore(config.ENCRYPTION_KEY)
gateway_client = MercadoPagoClient(config.gateway_config)
realtime_notifier = RealtimeNotifier()
