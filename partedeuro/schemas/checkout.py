"""
Checkout and cash order schemas.
"""
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from partedeuro.schemas.shipping import ShippingOptionSchema


class CheckoutItemSchema(BaseModel):
    listing_id: str
    quantity: int = Field(1, ge=1)


class CheckoutRequest(BaseModel):
    """
    Items and buyer details. Shipping options come from a prior
    /shipping/services call; prices are always read from the catalog.
    """
    items: List[CheckoutItemSchema] = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    country_code: str = Field(..., min_length=2, max_length=2)
    shipping_options: List[ShippingOptionSchema] = Field(default_factory=list)

    @field_validator("country_code")
    @classmethod
    def validate_country_code(cls, v):
        return v.upper()

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v.strip()


class CheckoutResponse(BaseModel):
    url: str
    order_id: str


class CashOrderItemSchema(BaseModel):
    listing_id: str
    quantity: int = Field(1, ge=1)
    price: Optional[int] = Field(None, ge=0, description="Override in cents")


class CashOrderRequestSchema(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    country_code: str = Field("AU", min_length=2, max_length=2)
    phone: Optional[str] = Field(None, max_length=50)
    items: List[CashOrderItemSchema] = Field(..., min_length=1)
    shipping_method: Optional[str] = None
    postage_cost: int = Field(0, ge=0)
    carrier: Optional[str] = None

    @field_validator("country_code")
    @classmethod
    def validate_country_code(cls, v):
        return v.upper()


class CashOrderResponse(BaseModel):
    success: bool
    order_id: str
