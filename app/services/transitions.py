from app.core.enums import BookingStatus, PaymentStatus
from app.core.exceptions import InvalidTransitionException

BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

# FAILED -> PENDING is only taken by retry_failed_payment.
PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PROCESSING, PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED}),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


def can_transition_booking(current: BookingStatus, new: BookingStatus) -> bool:
    return BookingStatus(new) in BOOKING_TRANSITIONS[BookingStatus(current)]


def can_transition_payment(current: PaymentStatus, new: PaymentStatus) -> bool:
    return PaymentStatus(new) in PAYMENT_TRANSITIONS[PaymentStatus(current)]


def ensure_booking_transition(current: BookingStatus, new: BookingStatus) -> None:
    if not can_transition_booking(current, new):
        raise InvalidTransitionException("booking", BookingStatus(current).value, BookingStatus(new).value)


def ensure_payment_transition(current: PaymentStatus, new: PaymentStatus) -> None:
    if not can_transition_payment(current, new):
        raise InvalidTransitionException("payment", PaymentStatus(current).value, PaymentStatus(new).value)
