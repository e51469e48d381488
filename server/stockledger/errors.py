class InventoryError(ValueError):
    """Base class for every failure the ledger reports to callers."""

    code = "error"
    retryable = False

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(InventoryError):
    code = "validation"


class InsufficientStockError(InventoryError):
    code = "insufficient_stock"

    def __init__(self, label: str, available, requested, *, field: str | None = None):
        self.label = label
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {label} (available {available}, requested {requested}).",
            field=field,
        )


class StateConflictError(InventoryError):
    code = "state_conflict"


class IntegrityViolationError(InventoryError):
    code = "integrity"


class NotFoundError(IntegrityViolationError):
    code = "not_found"

    def __init__(self, resource: str, resource_id=None, *, field: str | None = None):
        message = f"{resource} not found." if resource_id is None else f"{resource} #{resource_id} not found."
        super().__init__(message, field=field)


class PermissionDeniedError(InventoryError):
    code = "forbidden"


class TransientError(InventoryError):
    code = "transient"
    retryable = True
