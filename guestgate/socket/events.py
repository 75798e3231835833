import logging
from collections import defaultdict

from guestgate.core.config import get_settings
from guestgate.core.security import decode_token

settings = get_settings()
logger = logging.getLogger(__name__)


def _resolve_host_id(auth: dict | None) -> str | None:
    token = (auth or {}).get("token")
    if not token:
        return None
    try:
        payload = decode_token(token)
    except ValueError:
        return None
    return payload.get("sub")


def host_room(host_id: str) -> str:
    return f"host:{host_id}"


def checkin_patches(results: list[dict]) -> dict[str, dict]:
    """Groups admitted guests into one dashboard patch per host."""
    activity: dict[str, list[dict]] = defaultdict(list)
    for item in results:
        host_id = item.get("hostId")
        if not item.get("visitId") or not host_id:
            continue
        activity[host_id].append(
            {
                "id": item["visitId"],
                "event": f"{item.get('guestName') or item.get('guestEmail')} checked in",
                "time": item.get("checkedInAt"),
                "state": "re-entry" if item.get("reEntry") else "admitted",
                "hostId": host_id,
            }
        )
    return {host_id: {"data": {"activity": items}} for host_id, items in activity.items()}


async def broadcast_checkin(sio, results: list[dict]) -> None:
    """Pushes admitted guests to their host's dashboard; delivery is best-effort."""
    for host_id, patch in checkin_patches(results).items():
        try:
            await sio.emit(
                "dashboard.patch",
                patch,
                room=host_room(host_id),
                namespace=settings.DASHBOARD_NAMESPACE,
            )
        except Exception:
            logger.exception("dashboard broadcast failed host=%s", host_id)


def register_socket_events(sio):
    @sio.event(namespace=settings.DASHBOARD_NAMESPACE)
    async def connect(sid, environ, auth):
        host_id = _resolve_host_id(auth)
        await sio.save_session(sid, {"hostId": host_id}, namespace=settings.DASHBOARD_NAMESPACE)
        if host_id:
            await sio.enter_room(sid, host_room(host_id), namespace=settings.DASHBOARD_NAMESPACE)
        await sio.emit(
            "dashboard.snapshot",
            {"data": {"message": "connected"}},
            to=sid,
            namespace=settings.DASHBOARD_NAMESPACE,
        )

    @sio.on("dashboard.subscribe", namespace=settings.DASHBOARD_NAMESPACE)
    async def dashboard_subscribe(sid, payload):
        room = (payload or {}).get("room")
        if not room:
            return
        if room.startswith("host:"):
            session = await sio.get_session(sid, namespace=settings.DASHBOARD_NAMESPACE)
            host_id = session.get("hostId")
            if not host_id or room != host_room(host_id):
                logger.info("dashboard subscribe refused sid=%s room=%s", sid, room)
                return
        await sio.enter_room(sid, room, namespace=settings.DASHBOARD_NAMESPACE)
