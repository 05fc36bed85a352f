"""
Error taxonomy shared by the services and the HTTP layer.

Each exception knows the status code it is rendered with; main.py turns them
into the JSON envelope {"error": ..., "details": ...}.
"""

from typing import Any, Dict, Optional


class StoreError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.details = details
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        body.update(self.extra)
        return body


class ValidationError(StoreError):
    status_code = 400
    default_message = "Invalid request"


class Unauthorized(StoreError):
    status_code = 401
    default_message = "Unauthorized"


class NotFound(StoreError):
    status_code = 404
    default_message = "Not found"


class Conflict(StoreError):
    status_code = 409
    default_message = "Conflict"


class OutOfStock(Conflict):
    default_message = "Product is out of stock"


class ServiceError(StoreError):
    status_code = 500
    default_message = "Service failure"


class ServiceUnavailable(ServiceError):
    status_code = 503
    default_message = "Service temporarily unavailable"
