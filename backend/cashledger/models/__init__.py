from .facilities import Facility
from .payments import Booking, BookingPayment, Order, OrderPayment
from .registers import RegisterSession, CashMovement

__all__ = [
    'Facility',
    'Booking', 'BookingPayment', 'Order', 'OrderPayment',
    'RegisterSession', 'CashMovement',
]
