"""Domain errors raised by the warehouse services.

Every error carries a human readable ``message``, a stable ``code`` and a
``details`` dict with enough structure for the caller to render an actionable
message (which store, which ingredient, required vs. available). The API layer
maps them to HTTP responses in ``bakehouse.main``.
"""

from decimal import Decimal
from typing import Any, Dict, Optional


def _format_qty(value: Any) -> str:
    """Render a quantity without trailing zeros: 3.000 -> 3, 0.120 -> 0.12."""
    if isinstance(value, Decimal) and value.is_finite():
        return format(value.normalize(), "f")
    return str(value)


class WarehouseError(Exception):
    """Base exception for warehouse and transfer-request errors."""

    status_code = 400
    default_code = "warehouse_error"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or "An error occurred in the warehouse service"
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert the exception to a JSON-serializable dictionary."""
        error_dict: Dict[str, Any] = {
            "detail": self.message,
            "error": self.code,
        }
        for key, value in self.details.items():
            error_dict[key] = float(value) if isinstance(value, Decimal) else value
        return error_dict


class NotFoundError(WarehouseError):
    """Unknown request, store or ingredient."""

    status_code = 404
    default_code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} {entity_id} not found",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(WarehouseError):
    """Status precondition violated for a transfer request."""

    status_code = 409
    default_code = "invalid_transition"

    def __init__(self, request_id: int, from_status: str, to_status: str):
        super().__init__(
            f"Cannot change transfer request {request_id} from '{from_status}' to '{to_status}'",
            details={
                "request_id": request_id,
                "from_status": from_status,
                "to_status": to_status,
            },
        )
        self.request_id = request_id
        self.from_status = from_status
        self.to_status = to_status


class InsufficientStockError(WarehouseError):
    """Raised when there's not enough main-warehouse stock for a deduction."""

    status_code = 409
    default_code = "insufficient_stock"

    def __init__(
        self,
        store_id: int,
        ingredient_id: int,
        required: Decimal,
        available: Decimal,
        ingredient_name: str = "",
        store_name: str = "",
        unit: str = "",
    ):
        label = ingredient_name or f"ingredient {ingredient_id}"
        where = f'store "{store_name}"' if store_name else f"store {store_id}"
        super().__init__(
            f"Insufficient stock in {where} for '{label}': "
            f"need {_format_qty(required)} {unit}, have {_format_qty(available)} {unit}".rstrip(),
            details={
                "store_id": store_id,
                "store_name": store_name,
                "ingredient_id": ingredient_id,
                "ingredient_name": ingredient_name,
                "required": required,
                "available": available,
                "unit": unit,
            },
        )
        self.store_id = store_id
        self.ingredient_id = ingredient_id
        self.required = required
        self.available = available
        self.ingredient_name = ingredient_name
        self.store_name = store_name
        self.unit = unit


class NothingToApproveError(WarehouseError):
    """None of the requests in a bulk approval are pending."""

    default_code = "nothing_to_approve"

    def __init__(self, request_ids: list):
        super().__init__(
            "No pending transfer requests found among the selected requests",
            details={"request_ids": list(request_ids)},
        )
        self.request_ids = list(request_ids)


class ConcurrencyConflictError(WarehouseError):
    """A concurrent writer won the race; the whole operation may be retried."""

    status_code = 409
    default_code = "concurrency_conflict"

    def __init__(self, operation: str, attempts: int = 1, reason: str = ""):
        message = f"Concurrent modification during {operation}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            details={"operation": operation, "attempts": attempts},
        )
        self.operation = operation
        self.attempts = attempts


class PermissionDeniedError(WarehouseError):
    """The user is not a warehouse manager of the request's store."""

    status_code = 403
    default_code = "permission_denied"

    def __init__(self, store_id: int, user_name: str):
        super().__init__(
            f"'{user_name}' is not a warehouse manager of store {store_id}",
            details={"store_id": store_id, "user_name": user_name},
        )
        self.store_id = store_id
        self.user_name = user_name
