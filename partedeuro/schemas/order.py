"""
Order schemas.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from partedeuro.models.order import OrderStatus


class OrderItemResponse(BaseModel):
    listing_id: str
    quantity: int

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: str
    status: str
    admin_created: bool = False
    email: str
    name: str
    subtotal: int
    shipping: int
    total: int
    shipping_country: Optional[str] = None
    shipping_method: Optional[str] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    xero_invoice_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


class UpdateTrackingRequest(BaseModel):
    tracking_number: str = Field(..., min_length=1, max_length=100)
    carrier: str = Field(..., min_length=1, max_length=100)


class UpdateStatusRequest(BaseModel):
    status: OrderStatus
