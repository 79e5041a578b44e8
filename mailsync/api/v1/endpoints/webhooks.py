"""Webhook API: provider notifications and subscription management.

The notification endpoint answers 202 for anything that is not a
validation handshake, whether or not any item verified.
"""

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import ValidationError

from mailsync.api.v1.dependencies import get_sync_runner, get_webhook_manager
from mailsync.application.use_cases.sync import SyncRunner
from mailsync.core.limiter import limit_subscription_writes
from mailsync.infrastructure.services import WebhookSubscriptionManager
from mailsync.schemas.webhook import (
    SubscriptionResponse,
    SweepResponse,
    WebhookAckResponse,
    WebhookNotificationEnvelope,
    WebhookNotificationItem,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_notifications(raw: bytes) -> list[WebhookNotificationItem]:
    """Accept {"value": [...]} or a single notification; anything else is empty."""
    try:
        payload = json.loads(raw) if raw else None
    except ValueError:
        return []
    try:
        if isinstance(payload, dict) and "value" in payload:
            return WebhookNotificationEnvelope.model_validate(payload).value
        if isinstance(payload, dict):
            return [WebhookNotificationItem.model_validate(payload)]
    except ValidationError as e:
        logger.debug("Malformed webhook payload: %s", e.error_count())
    return []


@router.post(
    "/webhooks/notifications",
    response_model=WebhookAckResponse,
    status_code=202,
    responses={200: {"description": "Validation handshake: token echoed as text/plain"}},
)
async def receive_notifications(
    request: Request,
    manager: Annotated[WebhookSubscriptionManager, Depends(get_webhook_manager)],
    runner: Annotated[SyncRunner, Depends(get_sync_runner)],
    validation_token: Annotated[str | None, Query(alias="validationToken")] = None,
) -> Response | WebhookAckResponse:
    """Verify each notification and submit an incremental sync per match."""
    if validation_token is not None:
        return PlainTextResponse(content=validation_token, status_code=200)
    items = _parse_notifications(await request.body())
    for item in items:
        sync_request = await manager.handle_notification(
            item.subscription_id, item.client_state, item.resource_hint
        )
        if sync_request is not None:
            runner.submit(sync_request)
    return WebhookAckResponse(received=len(items))


@router.post(
    "/accounts/{account_id}/webhook-subscription",
    response_model=SubscriptionResponse,
)
@limit_subscription_writes
async def subscribe_account(
    request: Request,
    account_id: str,
    manager: Annotated[WebhookSubscriptionManager, Depends(get_webhook_manager)],
) -> SubscriptionResponse:
    """Create the account's push subscription, or renew the active one."""
    info = await manager.subscribe(account_id)
    return SubscriptionResponse.model_validate(info)


@router.delete("/webhook-subscriptions/{subscription_id}", status_code=204)
@limit_subscription_writes
async def unsubscribe(
    request: Request,
    subscription_id: str,
    manager: Annotated[WebhookSubscriptionManager, Depends(get_webhook_manager)],
) -> Response:
    await manager.unsubscribe(subscription_id)
    return Response(status_code=204)


@router.post("/webhook-subscriptions/sweep", response_model=SweepResponse)
async def sweep_subscriptions(
    manager: Annotated[WebhookSubscriptionManager, Depends(get_webhook_manager)],
) -> SweepResponse:
    """Renew every subscription expiring within the renewal window."""
    result = await manager.sweep()
    return SweepResponse.model_validate(result)
