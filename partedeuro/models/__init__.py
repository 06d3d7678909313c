from partedeuro.models.listing import Listing, Part, listing_parts
from partedeuro.models.order import FailedOrder, Order, OrderItem, OrderStatus
from partedeuro.models.settlement import SettlementStep, SettlementStepName
from partedeuro.models.xero import XeroToken

__all__ = [
    "Listing",
    "Part",
    "listing_parts",
    "Order",
    "OrderItem",
    "OrderStatus",
    "FailedOrder",
    "SettlementStep",
    "SettlementStepName",
    "XeroToken",
]
