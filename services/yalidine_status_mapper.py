"""
Yalidine Status Mapping
Maps carrier status text (French free text or machine codes) to OrderStatus
"""

import logging
from typing import Dict, Optional, Tuple

from models import OrderStatus
from utils.normalizers import normalize_status_text

logger = logging.getLogger(__name__)


class YalidineStatusMapper:
    """
    Lookup from normalized carrier tokens to the order vocabulary.

    Resolution order: event type override, exact machine code, then token
    groups in precedence order. Unknown text maps to None.
    """

    # Event types that decide the status regardless of text
    EVENT_TYPE_OVERRIDES: Dict[str, OrderStatus] = {
        "parcel_deleted": OrderStatus.CANCELLED,
        "parcel_created": OrderStatus.SHIPPED,
    }

    # Exact machine codes from the legacy webhook
    STATUS_CODES: Dict[str, OrderStatus] = {
        "pending": OrderStatus.PROCESSING,
        "picked_up": OrderStatus.SHIPPED,
        "in_transit": OrderStatus.SHIPPED,
        "out_for_delivery": OrderStatus.SHIPPED,
        "delivered": OrderStatus.DELIVERED,
        "returned": OrderStatus.CANCELLED,
        "failed_delivery": OrderStatus.PROCESSING,
        "cancelled": OrderStatus.CANCELLED,
    }

    # Substring tokens (already normalized), first matching group wins
    TOKEN_GROUPS: Tuple[Tuple[Tuple[str, ...], OrderStatus], ...] = (
        (("retour", "return", "annul", "cancel"), OrderStatus.CANCELLED),
        (
            ("echou", "echec", "failed", "non livre", "en preparation", "pas encore"),
            OrderStatus.PROCESSING,
        ),
        (("livre", "delivered"), OrderStatus.DELIVERED),
        (
            (
                "expedie",
                "ramasse",
                "transit",
                "transfert",
                "centre",
                "wilaya",
                "sorti",
                "en livraison",
                "en attente",
                "recu par",
                "picked",
                "shipped",
                "out for delivery",
            ),
            OrderStatus.SHIPPED,
        ),
    )

    @classmethod
    def map_status(cls, status_text: Optional[str], event_type: Optional[str] = None) -> Optional[OrderStatus]:
        if event_type in cls.EVENT_TYPE_OVERRIDES:
            return cls.EVENT_TYPE_OVERRIDES[event_type]

        normalized = normalize_status_text(status_text)
        if not normalized:
            return None

        code = normalized.replace(" ", "_").replace("-", "_")
        if code in cls.STATUS_CODES:
            return cls.STATUS_CODES[code]

        for tokens, status in cls.TOKEN_GROUPS:
            if any(token in normalized for token in tokens):
                return status

        logger.warning(f"⚠️ YALIDINE_UNKNOWN_STATUS: {status_text!r} (type={event_type})")
        return None
