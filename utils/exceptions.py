"""
Fulfillment error taxonomy
Each error carries the HTTP status the API layer answers with
"""

from typing import Any, Dict, Optional


class FulfillmentError(Exception):
    """Base class for every error raised by the fulfillment pipeline"""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": type(self).__name__, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(FulfillmentError):
    """Illegal transition, malformed request body or out-of-range value"""

    status_code = 400


class AuthzError(FulfillmentError):
    """Missing/invalid webhook signature or insufficient caller privilege"""

    status_code = 403


class NotFoundError(FulfillmentError):
    """Unknown file or order"""

    status_code = 404


class ConflictError(FulfillmentError):
    """Concurrent modification or duplicate where uniqueness is required"""

    status_code = 409


class ExternalServiceError(FulfillmentError):
    """Object store, carrier, messaging bot or email provider failure"""

    status_code = 502

    def __init__(self, service: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__(f"{service}: {message}", details)
