"""
Order lifecycle errors.

Views map these to HTTP responses; messages are safe to show customers.
"""


class OrderError(Exception):
    """Base class for order lifecycle failures."""
    pass


class OrderValidationError(OrderError):
    """Raised when checkout or modification input is invalid."""
    pass


class OrderNotFound(OrderError):
    def __init__(self, reference):
        self.reference = reference
        super().__init__(f"Order {reference} not found")


class OrderAccessDenied(OrderError):
    def __init__(self, message="You do not have access to this order"):
        super().__init__(message)


class OrderNotCancellable(OrderError):
    pass


class OrderNotModifiable(OrderError):
    pass


class ModificationWindowExpired(OrderNotModifiable):
    pass


class InvalidStatusTransition(OrderError):
    def __init__(self, from_status, to_status, actor=None):
        self.from_status = from_status
        self.to_status = to_status
        self.actor = actor
        by = f" by {actor}" if actor else ""
        super().__init__(f"Cannot move order from {from_status} to {to_status}{by}")


class StaleOrderState(OrderError):
    """The order changed status between reading it and writing the transition."""
    def __init__(self, order_id, expected_status):
        self.order_id = order_id
        self.expected_status = expected_status
        super().__init__(
            f"Order {order_id} is no longer {expected_status}; reload and try again"
        )


class PaymentOrderMismatch(OrderError):
    def __init__(self, order_id, gateway_order_id):
        self.order_id = order_id
        self.gateway_order_id = gateway_order_id
        super().__init__(f"Payment {gateway_order_id} does not belong to order {order_id}")
