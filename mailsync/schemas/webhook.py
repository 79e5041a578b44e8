"""Webhook notification and subscription schemas.

Notifications arrive either as a Graph-style envelope ``{"value": [...]}``
or as a single object. ``resource`` is accepted as an alias of
``resourceHint``.
"""

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class WebhookNotificationItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    subscription_id: str = Field(
        validation_alias=AliasChoices("subscriptionId", "subscription_id")
    )
    client_state: str | None = Field(
        default=None, validation_alias=AliasChoices("clientState", "client_state")
    )
    resource_hint: str | None = Field(
        default=None,
        validation_alias=AliasChoices("resourceHint", "resource", "resource_hint"),
    )


class WebhookNotificationEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    value: list[WebhookNotificationItem]


class WebhookAckResponse(BaseModel):
    """Response for POST /webhooks/notifications (always 202)."""

    detail: str = "Notifications received"
    received: int = 0


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subscription_id: str
    account_id: str
    resource: str
    expiration: datetime
    created: bool


class SweepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    renewed: int
    failed: int
    errors: list[dict[str, Any]] = Field(default_factory=list)
