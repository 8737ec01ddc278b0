"""
Domain enums (minimal set used for clarity in services).
"""

from enum import Enum


class OrderStatus(str, Enum):
    PAID = "paid"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"


# Orders in these states hold no claim on any puppy
TERMINAL_ORDER_STATUSES = (OrderStatus.CANCELLED.value, OrderStatus.ARCHIVED.value)


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class DeliveryOption(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"
