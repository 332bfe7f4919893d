from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

PAYMENT_NOTIFICATION_TYPE = "payment"


def coerce_identifier(value) -> str | None:
    """Provider ids arrive as integers or strings; anything else is dropped."""
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        return None
    text = str(value).strip()
    return text or None


class WebhookNotificationData(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value):
        return coerce_identifier(value)


class WebhookNotification(BaseModel):
    """Inbound Mercado Pago notification, decoded at the HTTP boundary.

    Only ``type``, ``action`` and ``data.id`` are interpreted. The payload is
    an untrusted hint that something changed for a payment; status is always
    fetched from the provider.
    """

    model_config = ConfigDict(extra="allow")

    type: str | None = None
    action: str | None = None
    data: WebhookNotificationData | None = None

    @field_validator("data", mode="before")
    @classmethod
    def _drop_malformed_data(cls, value):
        if value is None or isinstance(value, (dict, WebhookNotificationData)):
            return value
        return None

    @field_validator("type", "action", mode="before")
    @classmethod
    def _stringify(cls, value):
        if value is None:
            return None
        return str(value)

    @property
    def payment_id(self) -> str | None:
        if self.type != PAYMENT_NOTIFICATION_TYPE or self.data is None:
            return None
        return self.data.id

    @property
    def referenced_id(self) -> str | None:
        return self.data.id if self.data else None

    @classmethod
    def from_request(
        cls, body: Any, query_params: dict[str, str] | None = None
    ) -> tuple["WebhookNotification", dict]:
        """Build a notification from a JSON body and the query string.

        Mercado Pago also delivers IPN-style notifications as
        ``?topic=payment&id=123`` or ``?type=payment&data.id=123`` with an
        empty body. Returns the decoded notification and the raw payload that
        is stored in the audit log.
        """
        raw: dict = dict(body) if isinstance(body, dict) else {}
        if body is not None and not isinstance(body, dict):
            raw["_body"] = body
        query = dict(query_params or {})
        if query:
            raw.setdefault("_query", query)
        candidate = dict(raw)
        if "type" not in candidate:
            candidate["type"] = query.get("type") or query.get("topic")
        if not isinstance(candidate.get("data"), dict):
            query_id = query.get("data.id") or query.get("id")
            if query_id:
                candidate["data"] = {"id": query_id}
        return cls.model_validate(candidate), raw


class WebhookAck(BaseModel):
    success: bool = True


class WebhookEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_type: str | None = None
    action: str | None = None
    payment_id: str | None = None
    payload: dict | None = None
    processed: bool
    processed_at: datetime | None = None
    error: str | None = None
    created_at: datetime
