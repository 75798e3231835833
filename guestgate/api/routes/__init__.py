from fastapi import APIRouter

from guestgate.api.routes import admin, checkin, guests, health, invitations, qr

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(checkin.router, prefix="/checkin", tags=["checkin"])
api_router.include_router(qr.router, prefix="/qr", tags=["qr"])
api_router.include_router(invitations.router, prefix="/invitations", tags=["invitations"])
api_router.include_router(guests.router, prefix="/guests", tags=["guests"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
