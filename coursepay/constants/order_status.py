from enum import Enum


class OrderStatus(str, Enum):
    NEW = "new"
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    UNDER_PROCESS = "under_process"
    PROCESSED = "processed"
    FAILED = "failed"
    EXPIRED = "expired"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    CAPTURED = "captured"
    FAILED = "failed"
    EXPIRED = "expired"
    REFUNDED = "refunded"


INITIAL_STATUS = OrderStatus.NEW

# the only place order transitions are declared
ALLOWED_TRANSITIONS = {
    OrderStatus.NEW: {OrderStatus.PENDING_PAYMENT},
    OrderStatus.PENDING_PAYMENT: {OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.EXPIRED},
    OrderStatus.PAID: {OrderStatus.UNDER_PROCESS, OrderStatus.FAILED, OrderStatus.REFUNDED},
    OrderStatus.UNDER_PROCESS: {OrderStatus.PROCESSED},
    OrderStatus.PROCESSED: {OrderStatus.REFUNDED},
    OrderStatus.FAILED: set(),
    OrderStatus.EXPIRED: set(),
    OrderStatus.REFUNDED: set(),
}

TERMINAL_STATUSES = frozenset(
    {OrderStatus.PROCESSED, OrderStatus.FAILED, OrderStatus.EXPIRED, OrderStatus.REFUNDED}
)

# statuses from which a checkout session may be (re)started
CHECKOUT_STATUSES = frozenset({OrderStatus.NEW, OrderStatus.PENDING_PAYMENT})

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.CAPTURED, PaymentStatus.FAILED, PaymentStatus.EXPIRED},
    PaymentStatus.CAPTURED: {PaymentStatus.REFUNDED},
    # a provider may still report a capture after we gave up on the attempt
    PaymentStatus.FAILED: {PaymentStatus.CAPTURED},
    PaymentStatus.EXPIRED: {PaymentStatus.CAPTURED},
    PaymentStatus.REFUNDED: set(),
}
