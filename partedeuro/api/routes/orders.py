"""
Order lookup for the checkout confirmation page.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from partedeuro.core.database import get_db
from partedeuro.schemas.order import OrderResponse
from partedeuro.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str, db: AsyncSession = Depends(get_db)):
    order = await OrderService.get_order(db, order_id)
    return OrderResponse.model_validate(order)
