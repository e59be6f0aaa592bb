"""
Typed view of PayMongo webhook envelopes.

PayMongo posts:

    {
        "data": {
            "id": "evt_xxx",
            "type": "event",
            "attributes": {
                "type": "payment.paid",
                "livemode": false,
                "data": {"id": "pay_xxx", "type": "payment", "attributes": {...}}
            }
        }
    }

parse_event() turns that into a GatewayEvent whose kind is one of the
GatewayEventKind members; anything unrecognized becomes UNKNOWN and is
acknowledged without side effects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from payments.exceptions import PaymentValidationError


class GatewayEventKind(str, Enum):
    SOURCE_CHARGEABLE = "source.chargeable"
    PAYMENT_PAID = "payment.paid"
    PAYMENT_FAILED = "payment.failed"
    REFUND_SUCCEEDED = "refund.succeeded"
    REFUND_FAILED = "refund.failed"
    REFUND_UPDATED = "payment.refund.updated"
    UNKNOWN = "unknown"

    @classmethod
    def from_type(cls, event_type: str | None) -> GatewayEventKind:
        try:
            return cls((event_type or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


PAYMENT_EVENT_KINDS = frozenset(
    [GatewayEventKind.PAYMENT_PAID, GatewayEventKind.PAYMENT_FAILED]
)

REFUND_EVENT_KINDS = frozenset(
    [
        GatewayEventKind.REFUND_SUCCEEDED,
        GatewayEventKind.REFUND_FAILED,
        GatewayEventKind.REFUND_UPDATED,
    ]
)


@dataclass(frozen=True)
class GatewayEvent:
    """
    A parsed webhook event.

    Attributes:
        event_id: PayMongo event ID (evt_xxx)
        event_type: Raw event type string
        kind: Recognized event kind (UNKNOWN otherwise)
        resource_id: ID of the object the event is about (src_/pay_/ref_)
        resource_type: source, payment or refund
        attributes: The object's attributes
        livemode: Whether the event came from live mode
    """

    event_id: str
    event_type: str
    kind: GatewayEventKind
    resource_id: str | None = None
    resource_type: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    livemode: bool = False

    @property
    def status(self) -> str | None:
        return self.attributes.get("status")

    @property
    def source_id(self) -> str | None:
        source = self.attributes.get("source")
        if isinstance(source, dict):
            return source.get("id")
        return None

    @property
    def payment_intent_id(self) -> str | None:
        return self.attributes.get("payment_intent_id")

    @property
    def payment_id(self) -> str | None:
        """The payment this event concerns (the resource itself for payment.*)."""
        if self.kind in PAYMENT_EVENT_KINDS:
            return self.resource_id
        return self.attributes.get("payment_id")

    @property
    def failure_reason(self) -> str | None:
        return self.attributes.get("failed_message") or self.attributes.get(
            "failed_code"
        )

    @property
    def metadata(self) -> dict[str, Any]:
        return self.attributes.get("metadata") or {}


def parse_event(payload: dict[str, Any]) -> GatewayEvent:
    """
    Build a GatewayEvent from a decoded webhook body.

    Raises:
        PaymentValidationError: If the envelope has no event id
    """
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict) or not data.get("id"):
        raise PaymentValidationError(
            message="Malformed webhook payload: missing event id",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )

    attributes = data.get("attributes") or {}
    resource = attributes.get("data") or {}
    event_type = attributes.get("type") or ""

    return GatewayEvent(
        event_id=data["id"],
        event_type=event_type,
        kind=GatewayEventKind.from_type(event_type),
        resource_id=resource.get("id"),
        resource_type=resource.get("type"),
        attributes=resource.get("attributes") or {},
        livemode=bool(attributes.get("livemode", False)),
    )
