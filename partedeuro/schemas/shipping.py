"""
Shipping Schemas

Pydantic models for shipping quote requests and responses.
"""
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from partedeuro.modules.shipping.carriers.base import QuoteRequest, ShippingOption


class ShippingQuoteRequest(BaseModel):
    """Package and destination to quote. Weight in kg, dimensions in cm."""
    weight: float = Field(..., gt=0)
    length: float = Field(..., gt=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)
    country_code: str = Field(..., min_length=2, max_length=2)
    postcode: Optional[str] = Field(None, max_length=20)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    is_b2b: bool = False

    @field_validator("country_code")
    @classmethod
    def validate_country_code(cls, v):
        return v.upper()

    def to_quote_request(self) -> QuoteRequest:
        return QuoteRequest(
            weight=self.weight,
            length=self.length,
            width=self.width,
            height=self.height,
            destination_country=self.country_code,
            destination_postcode=self.postcode,
            destination_city=self.city,
            destination_state=self.state,
            is_b2b=self.is_b2b,
        )


class ShippingOptionSchema(BaseModel):
    display_name: str
    amount_minor_units: int
    currency: str = "AUD"

    @classmethod
    def from_option(cls, option: ShippingOption) -> "ShippingOptionSchema":
        return cls(**option.to_dict())


class ShippingServicesResponse(BaseModel):
    options: List[ShippingOptionSchema]


class CountrySchema(BaseModel):
    code: str
    name: str
