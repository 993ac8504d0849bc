from fastapi import APIRouter
from marketplace.api.v1.endpoints import users, invoices, deals, market

api_router = APIRouter()

api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
api_router.include_router(deals.router, prefix="/deals", tags=["deals"])
api_router.include_router(market.router, prefix="/market", tags=["market"])
