"""Error taxonomy for the fulfillment workflow.

Malformed input is reported with Protean's own ``ValidationError``. The
classes here cover the remaining categories. Every error carries a
``messages`` dict keyed by the offending field or entity, the same shape
``ValidationError`` uses, so callers can render both uniformly.
"""


class WorkflowError(Exception):
    def __init__(self, messages: dict[str, list[str]] | str):
        if isinstance(messages, str):
            messages = {"_entity": [messages]}
        self.messages = messages
        super().__init__(messages)


# ---------------------------------------------------------------------------
# Conflicts: the request is well formed but the current state forbids it
# ---------------------------------------------------------------------------
class ConflictError(WorkflowError):
    pass


class OutOfStock(ConflictError):
    pass


class StockConflict(ConflictError):
    pass


class PriceChanged(ConflictError):
    pass


class InvalidTransition(ConflictError):
    pass


class OrderLocked(ConflictError):
    """Item list or totals touched after the order left Draft."""


class PaymentInProgress(ConflictError):
    pass


class CouponRejected(ConflictError):
    pass


class ReturnQuantityExceeded(ConflictError):
    pass


class ShipmentExists(ConflictError):
    pass


# ---------------------------------------------------------------------------
# Other categories
# ---------------------------------------------------------------------------
class NotFoundError(WorkflowError):
    pass


class ExternalError(WorkflowError):
    """A gateway or carrier call failed or timed out."""

    def __init__(self, messages, retryable: bool = True):
        super().__init__(messages)
        self.retryable = retryable


class SecurityError(WorkflowError):
    pass


class InvalidSignature(SecurityError):
    def __init__(self, messages=None):
        super().__init__(messages or {"signature": ["Callback could not be verified"]})
