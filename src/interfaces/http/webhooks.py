import json

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session

from src.application.webhook_reconciler import WebhookReconciler
from src.config.logger_config import log
from src.infrastructure.clients.mercadopago_client import MercadoPagoClient
from src.infrastructure.crypto.credential_store import CredentialStore
from src.infrastructure.database.session import get_session
from src.infrastructure.realtime.notifier import RealtimeNotifier
from src.interfaces.http.dependencies import (
    get_credential_store,
    get_gateway_client,
    get_notifier,
)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payment-gateway")
async def payment_gateway_webhook(
    request: Request,
    session: Session = Depends(get_session),
    gateway_client: MercadoPagoClient = Depends(get_gateway_client),
    credential_store: CredentialStore = Depends(get_credential_store),
    notifier: RealtimeNotifier = Depends(get_notifier),
):
    """
    Receive Mercado Pago notifications.
    Always answers 200: the gateway retries anything else indefinitely,
    and no processing failure here is fixed by a retry.
    """
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body) if raw_body else {}
    except ValueError:
        log.warning("Webhook body is not JSON", size=len(raw_body))
        payload = {}

    reconciler = WebhookReconciler(
        session=session,
        gateway_client=gateway_client,
        credential_store=credential_store,
        notifier=notifier,
    )
    outcome = await reconciler.handle(payload, dict(request.query_params))
    log.info("Webhook acknowledged", outcome=outcome)
    return {"received": True}
