"""
Tests for the gateway-facing webhook endpoint.
"""

from sqlmodel import select

from src.domain.models import LinkStatus, WebhookNotification
from src.core.exceptions import GatewayUnavailableError


def test_payment_webhook_settles_link(client, session, merchant, make_link, fake_gateway, notifier):
    link = make_link(merchant, payment_transaction_id="pay_1")
    fake_gateway.set_payment("pay_1", "approved")
    channel = notifier.register(merchant.id)

    response = client.post(
        "/webhooks/payment-gateway",
        json={"id": "notif-1", "type": "payment", "data": {"id": "pay_1"}},
    )

    assert response.status_code == 200
    assert response.json() == {"received": True}
    session.refresh(link)
    assert link.status == LinkStatus.PAID.value
    assert link.paid_at is not None
    frames = []
    while channel.pending():
        frames.append(channel._queue.get_nowait())
    assert sum(f.startswith("event: payment_completed") for f in frames) == 1


def test_replayed_webhook_is_inert(client, session, merchant, make_link, fake_gateway):
    make_link(merchant, payment_transaction_id="pay_1")
    fake_gateway.set_payment("pay_1", "approved")
    payload = {"id": "notif-1", "type": "payment", "data": {"id": "pay_1"}}

    assert client.post("/webhooks/payment-gateway", json=payload).status_code == 200
    assert client.post("/webhooks/payment-gateway", json=payload).status_code == 200

    rows = session.exec(select(WebhookNotification)).all()
    assert len(rows) == 1


def test_query_string_notification(client, session, merchant, make_link, fake_gateway):
    link = make_link(merchant, payment_transaction_id="123")
    fake_gateway.set_payment("123", "approved")

    response = client.post(
        "/webhooks/payment-gateway", params={"topic": "payment", "id": "123"}
    )

    assert response.status_code == 200
    session.refresh(link)
    assert link.status == LinkStatus.PAID.value


def test_unmatched_notification_is_acknowledged(client, session, fake_gateway):
    fake_gateway.set_payment("nobody", "approved")

    response = client.post(
        "/webhooks/payment-gateway",
        json={"type": "payment", "data": {"id": "nobody"}},
    )

    assert response.status_code == 200
    assert session.exec(select(WebhookNotification)).all() == []


def test_processing_errors_still_return_200(client, merchant, make_link, fake_gateway):
    make_link(merchant, payment_transaction_id="pay_1")
    fake_gateway.status_error = GatewayUnavailableError("down")

    response = client.post(
        "/webhooks/payment-gateway",
        json={"type": "payment", "data": {"id": "pay_1"}},
    )

    assert response.status_code == 200
    assert response.json() == {"received": True}


def test_garbage_body_is_acknowledged(client):
    response = client.post(
        "/webhooks/payment-gateway",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 200


def test_merchant_order_is_acknowledged(client, fake_gateway):
    response = client.post(
        "/webhooks/payment-gateway",
        json={"type": "merchant_order", "data": {"id": "order-1"}},
    )
    assert response.status_code == 200
    assert fake_gateway.status_calls == []
