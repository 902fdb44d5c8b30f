# custody/api/v1/api.py
from fastapi import APIRouter

# Import semua router endpoints
from custody.api.v1.endpoints import assets, reservations

api_router_v1 = APIRouter(prefix="/api/v1")

# Include endpoint routers
api_router_v1.include_router(assets.router, prefix="/assets")
api_router_v1.include_router(reservations.router, prefix="/reservations")
