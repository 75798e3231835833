import asyncio

from guestgate.socket.events import broadcast_checkin, checkin_patches, host_room


class RecordingServer:
    def __init__(self, failing_rooms=()):
        self.emits = []
        self.failing_rooms = set(failing_rooms)

    async def emit(self, event, data, room=None, namespace=None, **kwargs):
        if room in self.failing_rooms:
            raise RuntimeError("socket transport closed")
        self.emits.append((event, room, data))


RESULTS = [
    {"success": True, "guestName": "Ann", "visitId": "v1", "hostId": "h1", "checkedInAt": "2026-06-15T17:00:00+00:00"},
    {"success": True, "guestName": "Bob", "visitId": "v2", "hostId": "h2", "reEntry": True},
    {"success": True, "guestName": "Cy", "visitId": "v3", "hostId": "h1"},
    {"success": False, "guestName": "Dee", "reason": "blacklisted"},
]


def test_patches_are_grouped_by_admitting_host():
    patches = checkin_patches(RESULTS)

    assert set(patches) == {"h1", "h2"}
    assert [item["id"] for item in patches["h1"]["data"]["activity"]] == ["v1", "v3"]
    assert patches["h2"]["data"]["activity"][0]["state"] == "re-entry"
    assert all(item["hostId"] == "h1" for item in patches["h1"]["data"]["activity"])


def test_broadcast_targets_each_host_room():
    server = RecordingServer()

    asyncio.run(broadcast_checkin(server, RESULTS))

    rooms = sorted(room for _, room, _ in server.emits)
    assert rooms == [host_room("h1"), host_room("h2")]
    assert all(event == "dashboard.patch" for event, _, _ in server.emits)
    assert None not in rooms


def test_rejections_are_not_broadcast():
    server = RecordingServer()
    asyncio.run(broadcast_checkin(server, [RESULTS[3]]))
    assert server.emits == []


def test_failed_room_does_not_stop_the_others():
    server = RecordingServer(failing_rooms={host_room("h1")})

    asyncio.run(broadcast_checkin(server, RESULTS))

    assert [room for _, room, _ in server.emits] == [host_room("h2")]
