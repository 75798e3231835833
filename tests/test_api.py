from datetime import timedelta

from guestgate.db.models import AuditLog, Invitation, InvitationStatus, Notification, Visit


def _fill_host(db_session, host, location, make_guest, now, count=3):
    for index in range(count):
        guest = make_guest(f"inside{index}@example.com")
        db_session.add(
            Visit(
                guest_id=guest.id,
                host_id=host.id,
                location_id=location.id,
                checked_in_at=now - timedelta(hours=1),
                expires_at=now + timedelta(hours=6),
            )
        )
    db_session.commit()


def test_health(client):
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


class TestCheckIn:
    def test_direct_guest_is_admitted(self, client, db_session, host, make_guest):
        make_guest("ann@example.com", "Ann")
        resp = client.post("/api/v1/checkin", json={"guest": {"e": "ann@example.com", "n": "Ann", "h": host.id}})

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "success"
        assert body["summary"] == {"total": 1, "successful": 1, "failed": 0}
        result = body["results"][0]
        assert result["guestEmail"] == "ann@example.com"
        assert db_session.get(Visit, result["visitId"]) is not None

    def test_repeat_scan_is_idempotent(self, client, db_session, host, make_guest):
        make_guest("ann@example.com", "Ann")
        payload = {"guest": {"e": "ann@example.com", "n": "Ann"}, "hostId": host.id}
        first = client.post("/api/v1/checkin", json=payload).json()["results"][0]
        second = client.post("/api/v1/checkin", json=payload).json()["results"][0]
        assert second["reEntry"] is True
        assert second["visitId"] == first["visitId"]
        assert db_session.query(Visit).count() == 1

    def test_acting_host_token_supplies_host(self, client, host, make_guest, auth_headers):
        make_guest("ann@example.com", "Ann")
        resp = client.post("/api/v1/checkin", json={"guest": {"e": "ann@example.com", "n": "Ann"}},
                           headers=auth_headers(host))
        assert resp.status_code == 200

    def test_two_forms_at_once_is_malformed(self, client, host):
        resp = client.post("/api/v1/checkin", json={"token": "a.b.c", "guest": {"e": "ann@example.com", "n": "Ann"}})
        assert resp.status_code == 400

    def test_empty_body_is_malformed(self, client):
        assert client.post("/api/v1/checkin", json={}).status_code == 400

    def test_unreadable_qr_is_400(self, client):
        resp = client.post("/api/v1/checkin", json={"qrData": "%%%"})
        assert resp.status_code == 400
        assert resp.json()["results"][0]["reason"] == "invalid_qr_format"

    def test_missing_consent_is_400(self, client, host, make_guest):
        make_guest("ann@example.com", consent_age=None)
        resp = client.post("/api/v1/checkin", json={"guest": {"e": "ann@example.com", "n": "Ann", "h": host.id}})
        assert resp.status_code == 400
        assert resp.json()["results"][0]["reason"] == "consent_missing"

    def test_capacity_override_flow(self, client, db_session, host, security, location, make_guest, now, auth_headers):
        _fill_host(db_session, host, location, make_guest, now)
        make_guest("ann@example.com", "Ann")
        base = {"guest": {"e": "ann@example.com", "n": "Ann", "h": host.id}}

        blocked = client.post("/api/v1/checkin", json=base)
        assert blocked.status_code == 409
        result = blocked.json()["results"][0]
        assert (result["currentCount"], result["maxCount"]) == (3, 3)
        assert result["state"] == "NEEDS_OVERRIDE"

        attempt = dict(base, overrideReason="Keynote speaker escort", overridePassword="wrong")
        wrong = client.post("/api/v1/checkin", json=attempt, headers=auth_headers(security))
        assert wrong.status_code == 401
        assert wrong.json()["results"][0]["reason"] == "override_password_incorrect"

        attempt["overridePassword"] = "let-them-in"
        approved = client.post("/api/v1/checkin", json=attempt, headers=auth_headers(security))
        assert approved.status_code == 200
        assert approved.json()["results"][0]["overrideApplied"] is True
        visit = db_session.get(Visit, approved.json()["results"][0]["visitId"])
        assert visit.override_by == security.id
        assert db_session.query(AuditLog).filter(AuditLog.action == "checkin.override").count() == 1

    def test_signed_batch_from_qr_endpoint(self, client, host, make_guest, auth_headers):
        make_guest("ann@example.com", "Ann")
        make_guest("bob@example.com", "Bob", consent_age=None)
        issued = client.post(
            "/api/v1/qr/batch",
            json={"guests": [{"e": "ann@example.com", "n": "Ann"}, {"e": "bob@example.com", "n": "Bob"}]},
            headers=auth_headers(host),
        )
        assert issued.status_code == 200

        resp = client.post("/api/v1/checkin", json={"qrData": issued.json()["data"]["qrData"]})

        assert resp.status_code == 207
        body = resp.json()
        assert body["status"] == "partial"
        assert [r["success"] for r in body["results"]] == [True, False]

    def test_third_visit_sends_discount(self, client, db_session, host, make_guest, now):
        guest = make_guest("ann@example.com", "Ann")
        for days in (60, 50):
            db_session.add(
                Visit(
                    guest_id=guest.id,
                    host_id=host.id,
                    checked_in_at=now - timedelta(days=days),
                    checked_out_at=now - timedelta(days=days, hours=-1),
                    expires_at=now - timedelta(days=days, hours=-2),
                )
            )
        db_session.commit()

        resp = client.post("/api/v1/checkin", json={"guest": {"e": "ann@example.com", "n": "Ann", "h": host.id}})

        assert resp.json()["results"][0]["discountSent"] is True
        notification = db_session.query(Notification).filter(Notification.recipient == "ann@example.com").one()
        assert notification.kind == "discount.earned"

    def test_checkout(self, client, host, make_guest, auth_headers):
        make_guest("ann@example.com", "Ann")
        checked_in = client.post("/api/v1/checkin", json={"guest": {"e": "ann@example.com", "n": "Ann", "h": host.id}})
        visit_id = checked_in.json()["results"][0]["visitId"]

        resp = client.post(f"/api/v1/checkin/visits/{visit_id}/checkout", headers=auth_headers(host))
        assert resp.status_code == 200
        assert resp.json()["data"]["checkedOutAt"] is not None

        again = client.post(f"/api/v1/checkin/visits/{visit_id}/checkout", headers=auth_headers(host))
        assert again.status_code == 400


class TestQRValidate:
    def test_reports_entry_errors(self, client):
        resp = client.post("/api/v1/qr/validate", json={"qrData": {"guests": [{"e": "ann@example.com"}]}})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["valid"] is False
        assert data["entries"][0]["reason"] == "invalid_qr_format"

    def test_batch_requires_staff(self, client):
        resp = client.post("/api/v1/qr/batch", json={"guests": [{"e": "ann@example.com", "n": "Ann"}]})
        assert resp.status_code == 401


class TestInvitations:
    def test_lifecycle(self, client, db_session, host, auth_headers):
        created = client.post(
            "/api/v1/invitations",
            json={"guestEmail": "ann@example.com", "guestName": "Ann"},
            headers=auth_headers(host),
        )
        assert created.status_code == 200
        invitation_id = created.json()["data"]["id"]
        assert created.json()["data"]["status"] == "PENDING"

        no_consent = client.post(f"/api/v1/invitations/{invitation_id}/activate", headers=auth_headers(host))
        assert no_consent.status_code == 400

        accepted = client.post("/api/v1/guests/ann@example.com/accept-terms", json={})
        assert accepted.status_code == 200

        activated = client.post(f"/api/v1/invitations/{invitation_id}/activate", headers=auth_headers(host))
        assert activated.status_code == 200
        token = activated.json()["data"]["qrToken"]
        assert activated.json()["data"]["status"] == "ACTIVATED"

        resp = client.post("/api/v1/checkin", json={"token": token})
        assert resp.status_code == 200
        invitation = db_session.get(Invitation, invitation_id)
        db_session.refresh(invitation)
        assert invitation.status == InvitationStatus.CHECKED_IN

    def test_expire(self, client, host, auth_headers):
        created = client.post(
            "/api/v1/invitations",
            json={"guestEmail": "ann@example.com", "guestName": "Ann"},
            headers=auth_headers(host),
        ).json()["data"]
        resp = client.post(f"/api/v1/invitations/{created['id']}/expire", headers=auth_headers(host))
        assert resp.json()["data"]["status"] == "EXPIRED"

    def test_accept_terms_for_unknown_guest_without_name(self, client):
        assert client.post("/api/v1/guests/nobody@example.com/accept-terms", json={}).status_code == 404


class TestAdmin:
    def test_policy_round_trip(self, client, admin, auth_headers):
        assert client.get("/api/v1/admin/policies", headers=auth_headers(admin)).json()["data"]["guestMonthlyLimit"] == 3

        resp = client.put("/api/v1/admin/policies", json={"guestMonthlyLimit": 5}, headers=auth_headers(admin))
        assert resp.status_code == 200
        assert resp.json()["data"]["guestMonthlyLimit"] == 5

        logs = client.get("/api/v1/admin/audit-logs", headers=auth_headers(admin)).json()["data"]
        assert logs[0]["action"] == "policy.update"

    def test_policy_limits_are_bounded(self, client, admin, auth_headers):
        resp = client.put("/api/v1/admin/policies", json={"hostConcurrentLimit": 0}, headers=auth_headers(admin))
        assert resp.status_code == 400

    def test_host_cannot_use_admin_routes(self, client, host, auth_headers):
        assert client.get("/api/v1/admin/policies", headers=auth_headers(host)).status_code == 403

    def test_policy_change_applies_to_check_in(self, client, db_session, host, location, admin, make_guest, now,
                                                auth_headers):
        _fill_host(db_session, host, location, make_guest, now, count=1)
        make_guest("ann@example.com", "Ann")
        client.put("/api/v1/admin/policies", json={"hostConcurrentLimit": 1}, headers=auth_headers(admin))

        resp = client.post("/api/v1/checkin", json={"guest": {"e": "ann@example.com", "n": "Ann", "h": host.id}})

        assert resp.status_code == 409
        assert resp.json()["results"][0]["maxCount"] == 1

    def test_blacklisted_guest_is_rejected(self, client, host, admin, make_guest, auth_headers):
        guest = make_guest("ann@example.com", "Ann")
        toggled = client.post(
            f"/api/v1/admin/guests/{guest.id}/blacklist", json={"action": "blacklist"}, headers=auth_headers(admin)
        )
        assert toggled.status_code == 200

        resp = client.post("/api/v1/checkin", json={"guest": {"e": "ann@example.com", "n": "Ann", "h": host.id}})

        assert resp.status_code == 400
        assert resp.json()["results"][0]["reason"] == "blacklisted"

    def test_close_location(self, client, host, location, admin, make_guest, auth_headers):
        make_guest("ann@example.com", "Ann")
        resp = client.put(f"/api/v1/admin/locations/{location.id}", json={"isActive": False},
                          headers=auth_headers(admin))
        assert resp.status_code == 200

        checkin = client.post("/api/v1/checkin", json={"guest": {"e": "ann@example.com", "n": "Ann", "h": host.id}})
        assert checkin.json()["results"][0]["reason"] == "location_closed"
