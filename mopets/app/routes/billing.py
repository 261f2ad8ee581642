"""API routes exposing billing functionality."""
from __future__ import annotations

import os
from typing import Any, Optional

from fastapi import APIRouter, Cookie, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool

from ... import app_context
from ..billing import BillingError
from ..schemas.billing import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    PlanListResponse,
    PlanResponse,
    PortalSessionRequest,
    PortalSessionResponse,
    WebhookAcknowledgement,
)
from ..services.billing import get_billing_service, get_price_catalog, get_webhook_dispatcher


_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
) -> Any:
    return app_context.get_current_user(session_token=session_token)


router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
def create_checkout_session(
    payload: CheckoutSessionRequest,
    *,
    current_user=Depends(_get_current_user),
) -> CheckoutSessionResponse:
    try:
        service = get_billing_service()
        session = service.create_checkout_session(
            account_id=str(current_user.id),
            mode=payload.mode,
            price_id=payload.price_id,
            amount=payload.amount,
            description=payload.description,
            metadata=payload.metadata,
            success_url=payload.success_url,
            cancel_url=payload.cancel_url,
        )
    except BillingError as exc:
        raise exc.to_http_exception() from exc
    return CheckoutSessionResponse.from_checkout(session)


@router.post("/portal-session", response_model=PortalSessionResponse)
def create_portal_session(
    payload: PortalSessionRequest,
    *,
    current_user=Depends(_get_current_user),
) -> PortalSessionResponse:
    try:
        service = get_billing_service()
        session = service.create_portal_session(str(current_user.id), return_url=payload.return_url)
    except BillingError as exc:
        raise exc.to_http_exception() from exc
    return PortalSessionResponse(url=session.url)


@router.get("/plans", response_model=PlanListResponse)
def list_plans() -> PlanListResponse:
    try:
        plans = get_price_catalog().plans()
    except BillingError as exc:
        raise exc.to_http_exception() from exc
    return PlanListResponse(plans=[PlanResponse.from_plan(plan) for plan in plans])


def process_webhook(payload: bytes, signature: Optional[str]) -> WebhookAcknowledgement:
    """Verify and dispatch one provider delivery."""

    try:
        dispatcher = get_webhook_dispatcher()
        result = dispatcher.handle(payload, signature)
    except BillingError as exc:
        raise exc.to_http_exception() from exc
    return WebhookAcknowledgement(**result)


@router.post("/webhook", response_model=WebhookAcknowledgement)
async def receive_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> WebhookAcknowledgement:
    # Signatures cover the exact bytes received, so the body is never re-parsed first.
    payload = await request.body()
    return await run_in_threadpool(process_webhook, payload, stripe_signature)
