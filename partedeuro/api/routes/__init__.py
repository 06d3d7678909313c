from fastapi import APIRouter

from partedeuro.api.routes import admin, checkout, orders, shipping

api_router = APIRouter()
api_router.include_router(shipping.router)
api_router.include_router(checkout.router)
api_router.include_router(orders.router)
api_router.include_router(admin.router)
