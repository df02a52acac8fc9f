"""
Errors raised by the lifecycle engine and ledger. Routes map them to HTTP responses in main.py.
"""


class OrderDeskError(Exception):
    """Base class. Raising one inside a unit of work rolls the transaction back."""


class ValidationError(OrderDeskError):
    """Malformed or out-of-range input. details holds field-level errors ({loc, msg, type})."""
    def __init__(self, message: str = "Invalid request data", details: list[dict] | None = None):
        self.message = message
        self.details = details or []
        super().__init__(message)

    @classmethod
    def for_field(cls, field: str, msg: str, type_: str = "value_error") -> "ValidationError":
        return cls(details=[{"loc": [field], "msg": msg, "type": type_}])


class NotFoundError(OrderDeskError):
    def __init__(self, entity: str, entity_id: str | None = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")


class InvalidTransitionError(OrderDeskError):
    """Status transition not allowed from the order's current status."""
    def __init__(self, current_status: str, attempted_status: str, valid_transitions: list[str]):
        self.current_status = current_status
        self.attempted_status = attempted_status
        self.valid_transitions = valid_transitions
        super().__init__(f"Invalid status transition from {current_status} to {attempted_status}")


class ConcurrencyConflictError(OrderDeskError):
    """Order row stayed locked by another writer (lock timeout, deadlock). Safe to retry once."""


def field_errors(errors: list[dict]) -> list[dict]:
    """Reduce pydantic error dicts to JSON-safe {loc, msg, type}."""
    return [
        {"loc": [str(part) for part in e.get("loc", ())], "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in errors
    ]
