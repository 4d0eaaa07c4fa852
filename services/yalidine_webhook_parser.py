"""
Yalidine webhook payload shapes

Yalidine delivers two incompatible bodies:
- legacy single event: {status, tracking|tracking_number, order_id, parcel?: {...}}
- batch: {type, events: [{event_id, occurred_at, data}]}

detect_shape() picks exactly one; anything else is a parse error. Each shape
has its own adapter producing CanonicalEvent records.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

import orjson

from utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

LEGACY_EVENT_TYPE = "parcel_status_updated"
_LEGACY_KEYS = ("status", "tracking", "tracking_number", "order_id", "parcel")

# Recipient snapshot fields copied from the carrier payload
_RECIPIENT_FIELDS = (
    "firstname",
    "familyname",
    "contact_phone",
    "address",
    "to_wilaya_name",
    "to_commune_name",
)


@dataclass(frozen=True)
class CanonicalEvent:
    """One logical carrier event, independent of the payload shape it came from"""
    event_id: str
    event_type: str
    occurred_at: Optional[datetime] = None
    tracking: Optional[str] = None
    order_reference: Optional[str] = None
    status_text: Optional[str] = None
    label_url: Optional[str] = None
    recipient: Dict[str, Any] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LegacyEvent:
    payload: Dict[str, Any]
    event_id: str


@dataclass(frozen=True)
class BatchEvent:
    event_type: str
    events: List[Any]


YalidinePayload = Union[LegacyEvent, BatchEvent]


def decode_body(raw_body: bytes) -> Any:
    try:
        return orjson.loads(raw_body)
    except orjson.JSONDecodeError as e:
        raise ValidationError(f"Malformed JSON body: {e}")


def detect_shape(payload: Any, raw_body: bytes) -> YalidinePayload:
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")

    if isinstance(payload.get("type"), str) and isinstance(payload.get("events"), list):
        return BatchEvent(event_type=payload["type"], events=payload["events"])

    if any(key in payload for key in _LEGACY_KEYS):
        # No carrier id on this shape; the body hash makes replays dedupe
        event_id = f"legacy-{hashlib.sha256(raw_body).hexdigest()}"
        return LegacyEvent(payload=payload, event_id=event_id)

    raise ValidationError("Unrecognized Yalidine payload shape", {"keys": sorted(payload.keys())[:20]})


def _text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_occurred_at(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"YALIDINE_BAD_TIMESTAMP: {value!r}")
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _recipient(source: Dict[str, Any]) -> Dict[str, Any]:
    return {name: source[name] for name in _RECIPIENT_FIELDS if source.get(name) not in (None, "")}


def legacy_to_canonical(legacy: LegacyEvent) -> CanonicalEvent:
    payload = legacy.payload
    parcel = payload.get("parcel") if isinstance(payload.get("parcel"), dict) else {}
    return CanonicalEvent(
        event_id=legacy.event_id,
        event_type=LEGACY_EVENT_TYPE,
        occurred_at=parse_occurred_at(payload.get("date") or payload.get("occurred_at")),
        tracking=_text(payload.get("tracking") or payload.get("tracking_number") or parcel.get("tracking")),
        order_reference=_text(payload.get("order_id") or parcel.get("order_id")),
        status_text=_text(payload.get("status") or parcel.get("status") or parcel.get("last_status")),
        label_url=_text(payload.get("label") or parcel.get("label")),
        recipient=_recipient({**parcel, **payload}),
        data=payload,
    )


def batch_to_canonical(batch: BatchEvent) -> List[CanonicalEvent]:
    """Adapt each contained event; an entry without an event_id is dropped, siblings continue"""
    canonical = []
    for index, item in enumerate(batch.events):
        if not isinstance(item, dict) or not _text(item.get("event_id")):
            logger.warning(f"⚠️ YALIDINE_EVENT_REJECTED: type={batch.event_type} index={index} missing event_id")
            continue
        data = item.get("data") if isinstance(item.get("data"), dict) else {}
        canonical.append(
            CanonicalEvent(
                event_id=_text(item["event_id"]),
                event_type=batch.event_type,
                occurred_at=parse_occurred_at(item.get("occurred_at")),
                tracking=_text(data.get("tracking")),
                order_reference=_text(data.get("order_id")),
                status_text=_text(data.get("status") or data.get("last_status")),
                label_url=_text(data.get("label")),
                recipient=_recipient(data),
                data=data,
            )
        )
    return canonical


def parse_yalidine_payload(raw_body: bytes) -> Tuple[YalidinePayload, List[CanonicalEvent]]:
    shape = detect_shape(decode_body(raw_body), raw_body)
    if isinstance(shape, BatchEvent):
        return shape, batch_to_canonical(shape)
    return shape, [legacy_to_canonical(shape)]
