"""
Domain exceptions raised by the service layer.

Routes let these propagate; the handler registered in main.py renders them
in the same envelope as HTTPException.
"""

from typing import Any, Dict, Optional

from fastapi import status


class CRMError(Exception):
    """Base class for business rule failures."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(CRMError):
    code = "validation_error"


class NotFoundError(CRMError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any = None):
        message = f"{entity} not found"
        super().__init__(message, {"entity": entity, "id": str(entity_id) if entity_id else None})


class ConflictError(CRMError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class InvalidTransitionError(CRMError):
    code = "invalid_transition"

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot change status from '{current}' to '{target}'",
            {"current": current, "target": target},
        )


class IntegrationError(CRMError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "integration_error"


class NotConfiguredError(IntegrationError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "not_configured"
