import asyncio

import pytest

from shopbot.lifecycle import IdentifierKind, Outcome
from shopbot.models import OrderStatus
from shopbot.webhooks import (
    DEFAULT_FAILURE_REASON,
    SESSION_EXPIRED_REASON,
    EventKind,
    classify,
)


def _event(event_type, obj):
    return {"id": "evt_test", "type": event_type, "data": {"object": obj}}


@pytest.mark.parametrize("event_type, kind", [
    ("checkout.session.completed", EventKind.CHECKOUT_COMPLETED),
    ("checkout.session.expired", EventKind.CHECKOUT_EXPIRED),
    ("payment_intent.payment_failed", EventKind.PAYMENT_FAILED),
    ("charge.refunded", EventKind.CHARGE_REFUNDED),
    ("customer.created", EventKind.OTHER),
    (None, EventKind.OTHER),
])
def test_classify(event_type, kind):
    assert classify(event_type) is kind


def test_every_event_kind_has_a_handler(services):
    assert set(services.webhooks.handlers) == set(EventKind)


def test_checkout_completed_dispatch(services, mocker):
    apply = mocker.patch.object(services.lifecycle, "apply_payment_success", mocker.AsyncMock())

    outcome = asyncio.run(services.webhooks.dispatch(
        _event("checkout.session.completed", {"id": "cs_1", "payment_intent": "pi_1"})
    ))

    assert outcome.kind is EventKind.CHECKOUT_COMPLETED
    apply.assert_awaited_once_with("cs_1", "pi_1")


def test_checkout_expired_dispatch(services, mocker):
    apply = mocker.patch.object(services.lifecycle, "apply_payment_failure", mocker.AsyncMock())

    asyncio.run(services.webhooks.dispatch(_event("checkout.session.expired", {"id": "cs_2"})))

    apply.assert_awaited_once_with("cs_2", SESSION_EXPIRED_REASON, IdentifierKind.CHECKOUT_SESSION)


def test_payment_failed_uses_processor_message(services, mocker):
    apply = mocker.patch.object(services.lifecycle, "apply_payment_failure", mocker.AsyncMock())

    asyncio.run(services.webhooks.dispatch(_event(
        "payment_intent.payment_failed",
        {"id": "pi_3", "last_payment_error": {"message": "Your card was declined."}},
    )))

    apply.assert_awaited_once_with("pi_3", "Your card was declined.", IdentifierKind.PAYMENT_INTENT)


def test_payment_failed_without_message_uses_fallback(services, mocker):
    apply = mocker.patch.object(services.lifecycle, "apply_payment_failure", mocker.AsyncMock())

    asyncio.run(services.webhooks.dispatch(_event(
        "payment_intent.payment_failed", {"id": "pi_4", "last_payment_error": None}
    )))

    apply.assert_awaited_once_with("pi_4", DEFAULT_FAILURE_REASON, IdentifierKind.PAYMENT_INTENT)


def test_charge_refunded_uses_first_refund(services, mocker):
    process = mocker.patch.object(services.refunds, "process_refund_webhook", mocker.AsyncMock())

    asyncio.run(services.webhooks.dispatch(_event(
        "charge.refunded",
        {"payment_intent": "pi_5", "refunds": {"data": [{"id": "re_first"}, {"id": "re_second"}]}},
    )))

    process.assert_awaited_once_with("pi_5", "re_first")


def test_charge_refunded_without_refund_id_is_noop(services, mocker):
    process = mocker.patch.object(services.refunds, "process_refund_webhook", mocker.AsyncMock())

    outcome = asyncio.run(services.webhooks.dispatch(_event(
        "charge.refunded", {"payment_intent": "pi_6", "refunds": {"data": []}}
    )))

    assert outcome.result is None
    process.assert_not_awaited()


def test_unhandled_event_is_acknowledged(services, mocker):
    success = mocker.patch.object(services.lifecycle, "apply_payment_success", mocker.AsyncMock())

    outcome = asyncio.run(services.webhooks.dispatch(_event("invoice.paid", {"id": "in_1"})))

    assert outcome.kind is EventKind.OTHER
    assert outcome.result is None
    success.assert_not_awaited()


def test_handler_exception_is_contained(services, mocker):
    mocker.patch.object(
        services.lifecycle, "apply_payment_success", mocker.AsyncMock(side_effect=asyncio.TimeoutError())
    )

    outcome = asyncio.run(services.webhooks.dispatch(
        _event("checkout.session.completed", {"id": "cs_boom"})
    ))

    assert outcome.result.outcome is Outcome.ERROR
    assert outcome.transient_failure is True


def test_refund_flow_end_to_end(services, make_order, load_order, transport):
    order = make_order(status=OrderStatus.PAID, payment_intent_id="pi_e2e")
    event = _event("charge.refunded", {"payment_intent": "pi_e2e", "refunds": {"data": [{"id": "re_e2e"}]}})

    asyncio.run(services.webhooks.dispatch(event))
    asyncio.run(services.webhooks.dispatch(event))

    reloaded = load_order(order.id)
    assert reloaded.status == "refunded"
    assert reloaded.refund_id == "re_e2e"
    assert len(transport.sent) == 1
