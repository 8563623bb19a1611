from fastapi import APIRouter

from parimutuel.api.routes import health, pools, transactions, ws

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
api_router.include_router(pools.router, tags=["pools"])
api_router.include_router(ws.router, prefix="/realtime", tags=["realtime"])
