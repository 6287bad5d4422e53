import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from shopbot.auth import verify_operator_token
from shopbot.errors import RefundResult, WebhookVerificationError
from shopbot.orders import find_order
from shopbot.services import Services
from shopbot.stripe_service import construct_event

logger = logging.getLogger(__name__)

router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


class RefundRequest(BaseModel):
    order: str  # numeric order id or external id


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    services: Services = Depends(get_services),
):
    payload = await request.body()

    try:
        event = construct_event(payload, stripe_signature, services.settings.require_webhook_secret())
    except WebhookVerificationError as e:
        logger.warning("Rejected webhook: %s", e)
        return PlainTextResponse(f"Webhook Error: {e}", status_code=400)

    outcome = await services.webhooks.dispatch(event)

    if outcome.transient_failure and services.settings.webhook_retry_transient:
        logger.warning("Asking Stripe to retry %s after transient failure", outcome.kind.value)
        return JSONResponse({"received": False}, status_code=503)
    # Everything past signature verification is acknowledged
    return {"received": True}


@router.post("/refund", response_model=RefundResult)
async def refund(
    body: RefundRequest,
    claims: dict = Depends(verify_operator_token),
    services: Services = Depends(get_services),
):
    async with services.session_factory() as db:
        order = await find_order(db, body.order)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")

    logger.info("Refund of order %s requested by %s", order.id, claims.get("sub", "unknown"))
    return await services.refunds.create_refund(order.id)


@router.get("/health")
async def health():
    return {"status": "ok"}
