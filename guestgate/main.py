import logging

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from guestgate.api.routes import api_router
from guestgate.core.config import get_settings
from guestgate.core.exceptions import register_exception_handlers
from guestgate.core.logging import setup_logging
from guestgate.db.base import Base
from guestgate.db.models import Host, HostRole, Location
from guestgate.db.session import SessionLocal, engine
from guestgate.middleware.request_context import RequestContextMiddleware
from guestgate.services.policy_service import get_policy_row
from guestgate.socket.server import sio

settings = get_settings()
setup_logging(logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)

fastapi_app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)
fastapi_app.include_router(api_router, prefix=settings.API_V1_PREFIX)
fastapi_app.add_middleware(RequestContextMiddleware)
fastapi_app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(fastapi_app)


def _seed_dev_data(db: Session):
    if db.query(Host).count() > 0:
        return

    try:
        lobby = Location(name="Main Lobby", is_active=True, check_in_cutoff_hour=23)
        db.add(lobby)
        db.flush()
        db.add_all(
            [
                Host(name="Demo Host", email="host@guestgate.local", role=HostRole.host, location_id=lobby.id),
                Host(name="Demo Security", email="security@guestgate.local", role=HostRole.security, location_id=lobby.id),
                Host(name="Demo Admin", email="admin@guestgate.local", role=HostRole.admin),
            ]
        )
        db.commit()
        logger.info("seeded development hosts and location")
    except IntegrityError:
        # Another worker already inserted seed rows.
        db.rollback()


@fastapi_app.on_event("startup")
async def on_startup():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        get_policy_row(db)
        if settings.ENVIRONMENT.lower() == "development":
            _seed_dev_data(db)
    finally:
        db.close()


app = socketio.ASGIApp(
    sio,
    other_asgi_app=fastapi_app,
    socketio_path=settings.SOCKET_PATH.lstrip("/"),
)
