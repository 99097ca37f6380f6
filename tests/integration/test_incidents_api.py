"""
Integration tests for incident intake, dispatch, status and broadcast endpoints.
"""
import math
from datetime import datetime, timedelta, timezone

import pytest

from incident_helpers import claim_incident_for_ranger
from models import AuditLog, Incident, Ranger, RangerAlert
from services.dispatch import DispatchMatch
from services.errors import AssignmentConflict
from services.location.distance import EARTH_RADIUS_KM


pytestmark = pytest.mark.integration

NAIROBI_FOREST = (-1.29, 36.82)


def km_north(km, origin=NAIROBI_FOREST):
    return origin[0] + math.degrees(km / EARTH_RADIUS_KM), origin[1]


def post_incident(client, **overrides):
    body = {"lat": NAIROBI_FOREST[0], "lon": NAIROBI_FOREST[1], "threat_type": "fire", "severity": "high"}
    body.update(overrides)
    return client.post("/api/incidents", json=body)


class TestIntake:

    def test_create_incident(self, client, db):
        response = post_incident(client, description="Smoke over the ridge")
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "reported"
        assert data["source"] == "app"
        assert data["verified"] is False
        assert data["assigned_ranger_id"] is None
        assert data["short_ref"] == data["id"][:8].upper()
        assert data["created_at"].endswith("Z")

        alert = db.query(RangerAlert).filter(RangerAlert.incident_id == data["id"]).one()
        assert alert.alert_type == "high_severity"
        assert alert.ranger_id is None
        assert db.query(AuditLog).filter(AuditLog.entity_id == data["id"], AuditLog.action == "CREATE").count() == 1

    @pytest.mark.parametrize("overrides", [
        {"threat_type": "flood"},
        {"severity": "apocalyptic"},
        {"lat": 91},
        {"lon": -181},
    ])
    def test_create_rejects_bad_input(self, client, overrides):
        assert post_incident(client, **overrides).status_code == 422

    def test_list_filters_and_order(self, client, make_incident):
        first = make_incident(source="sms", created_at=datetime.now(timezone.utc) - timedelta(hours=1))
        second = make_incident(source="app")
        data = client.get("/api/incidents").json()
        assert data["total"] == 2
        assert [i["id"] for i in data["incidents"]] == [second.id, first.id]

        sms_only = client.get("/api/incidents", params={"source": "sms"}).json()
        assert [i["id"] for i in sms_only["incidents"]] == [first.id]

    def test_get_missing(self, client):
        assert client.get("/api/incidents/does-not-exist").status_code == 404


class TestVerify:

    def test_verify_thanks_reporter(self, client, make_incident, sms_outbox):
        incident = make_incident(source="sms", sender_phone="+254711000111", threat_type="charcoal_production")
        response = client.post(f"/api/incidents/{incident.id}/verify")
        assert response.status_code == 200
        assert response.json()["sms_sent"] is True
        [message] = sms_outbox.to("+254711000111")
        assert "VERIFIED" in message
        assert incident.short_ref in message
        assert client.get(f"/api/incidents/{incident.id}").json()["verified"] is True

    def test_verify_twice(self, client, make_incident, sms_outbox):
        incident = make_incident(sender_phone="+254711000111")
        client.post(f"/api/incidents/{incident.id}/verify")
        again = client.post(f"/api/incidents/{incident.id}/verify").json()
        assert again["already_verified"] is True
        assert len(sms_outbox.messages) == 1


class TestAssign:

    def test_assigns_nearest_and_texts_ranger(self, client, db, make_incident, make_ranger, sms_outbox):
        incident = make_incident(*NAIROBI_FOREST)
        near = make_ranger(name="Wanjiru", phone="+254722000001", lat=km_north(3)[0], lon=NAIROBI_FOREST[1])
        make_ranger(name="Otieno", phone="+254722000002", lat=km_north(12)[0], lon=NAIROBI_FOREST[1])

        response = client.post(f"/api/incidents/{incident.id}/assign")
        assert response.status_code == 200
        data = response.json()
        assert data["ranger"]["id"] == near.id
        assert data["ranger"]["eta_minutes"] == 5
        assert data["incident"]["status"] == "assigned"
        assert data["incident"]["assigned_ranger_id"] == near.id
        assert data["incident"]["eta_minutes"] == 5
        assert data["sms_sent"] is True

        db.expire_all()
        ranger = db.get(Ranger, near.id)
        assert ranger.status == "en_route"
        assert ranger.current_incident_id == incident.id
        [message] = sms_outbox.to("+254722000001")
        assert message.startswith("RANGER DISPATCH")
        assert db.query(RangerAlert).filter(RangerAlert.ranger_id == near.id,
                                            RangerAlert.alert_type == "dispatch").count() == 1

    def test_no_rangers(self, client, make_incident, make_ranger):
        make_ranger(status="off_duty")
        incident = make_incident()
        response = client.post(f"/api/incidents/{incident.id}/assign")
        assert response.status_code == 404
        assert response.json()["detail"] == "No available rangers"

    def test_second_assignment_conflicts(self, client, make_incident, make_ranger):
        make_ranger(ranger_id="r-1", phone="+254722000001")
        make_ranger(ranger_id="r-2", phone="+254722000002")
        incident = make_incident()
        assert client.post(f"/api/incidents/{incident.id}/assign").status_code == 200
        assert client.post(f"/api/incidents/{incident.id}/assign").status_code == 409

    def test_manual_assignment(self, client, make_incident, make_ranger):
        make_ranger(ranger_id="r-near", lat=km_north(1)[0], lon=NAIROBI_FOREST[1])
        far = make_ranger(ranger_id="r-far", lat=km_north(20)[0], lon=NAIROBI_FOREST[1])
        incident = make_incident(*NAIROBI_FOREST)
        response = client.post(f"/api/incidents/{incident.id}/assign", json={"ranger_id": far.id})
        assert response.status_code == 200
        assert response.json()["ranger"]["id"] == "r-far"

    def test_manual_assignment_of_busy_ranger(self, client, make_incident, make_ranger):
        busy = make_ranger(ranger_id="r-busy", status="on_scene", current_incident_id="elsewhere")
        incident = make_incident()
        response = client.post(f"/api/incidents/{incident.id}/assign", json={"ranger_id": busy.id})
        assert response.status_code == 404

    def test_lost_race_on_incident_rolls_back(self, db, make_incident, make_ranger):
        incident = make_incident()
        ranger = make_ranger(ranger_id="r-1")
        assert incident.status == "reported"
        # another request assigns the row underneath this session's copy
        db.query(Incident).filter(Incident.id == incident.id).update(
            {Incident.assigned_ranger_id: "r-other", Incident.status: "assigned"},
            synchronize_session=False,
        )
        with pytest.raises(AssignmentConflict):
            claim_incident_for_ranger(db, incident, DispatchMatch(ranger=ranger, distance_km=1.0, eta_minutes=2))
        db.expire_all()
        assert db.get(Ranger, "r-1").current_incident_id is None
        assert db.get(Ranger, "r-1").status == "available"

    def test_lost_race_on_ranger_leaves_incident_unassigned(self, db, make_incident, make_ranger):
        incident = make_incident()
        ranger = make_ranger(ranger_id="r-1")
        db.query(Ranger).filter(Ranger.id == "r-1").update(
            {Ranger.current_incident_id: "other-incident", Ranger.status: "en_route"},
            synchronize_session=False,
        )
        with pytest.raises(AssignmentConflict):
            claim_incident_for_ranger(db, incident, DispatchMatch(ranger=ranger, distance_km=1.0, eta_minutes=2))
        db.expire_all()
        reloaded = db.get(Incident, incident.id)
        assert reloaded.status == "reported"
        assert reloaded.assigned_ranger_id is None
        assert reloaded.eta_minutes is None


class TestStatus:

    def test_lifecycle_keeps_ranger_link(self, client, db, make_incident, make_ranger):
        ranger = make_ranger(ranger_id="r-1")
        incident = make_incident()
        client.post(f"/api/incidents/{incident.id}/assign")

        for status in ("en_route", "on_scene"):
            response = client.post(f"/api/incidents/{incident.id}/status", json={"status": status})
            assert response.status_code == 200
            db.expire_all()
            assert db.get(Ranger, "r-1").status == status
            assert db.get(Ranger, "r-1").current_incident_id == incident.id

        data = client.post(f"/api/incidents/{incident.id}/status", json={"status": "resolved"}).json()
        assert data["ranger_released"] is True
        assert data["incident"]["resolved_at"] is not None
        assert data["incident"]["assigned_ranger_id"] == "r-1"
        db.expire_all()
        assert db.get(Ranger, ranger.id).status == "available"
        assert db.get(Ranger, ranger.id).current_incident_id is None

    def test_invalid_transition(self, client, make_incident):
        incident = make_incident()
        response = client.post(f"/api/incidents/{incident.id}/status", json={"status": "en_route"})
        assert response.status_code == 409
        assert client.get(f"/api/incidents/{incident.id}").json()["status"] == "reported"

    def test_assigned_requires_dispatch(self, client, make_incident):
        incident = make_incident()
        response = client.post(f"/api/incidents/{incident.id}/status", json={"status": "assigned"})
        assert response.status_code == 409

    def test_false_alarm_releases_ranger(self, client, db, make_incident, make_ranger):
        make_ranger(ranger_id="r-1")
        incident = make_incident()
        client.post(f"/api/incidents/{incident.id}/assign")
        data = client.post(f"/api/incidents/{incident.id}/status", json={"status": "false_alarm"}).json()
        assert data["incident"]["assigned_ranger_id"] is None
        assert data["incident"]["eta_minutes"] is None
        db.expire_all()
        assert db.get(Ranger, "r-1").status == "available"

    def test_unknown_status_value(self, client, make_incident):
        incident = make_incident()
        assert client.post(f"/api/incidents/{incident.id}/status", json={"status": "exploded"}).status_code == 422


class TestBroadcast:

    @pytest.fixture
    def incident_with_subscribers(self, make_incident, make_subscriber):
        incident = make_incident(*NAIROBI_FOREST)
        for phone, km in (("+254733000002", 2), ("+254733000004", 4), ("+254733000006", 6)):
            make_subscriber(phone, *km_north(km))
        return incident

    def test_broadcast_within_radius(self, client, incident_with_subscribers, sms_outbox):
        incident = incident_with_subscribers
        response = client.post(f"/api/incidents/{incident.id}/broadcast", json={"radius_km": 5})
        assert response.status_code == 200
        data = response.json()
        assert data["recipients"] == ["+254733000002", "+254733000004"]
        assert data["sent_count"] == 2
        assert data["failed_count"] == 0
        assert [p for p, _ in sms_outbox.messages] == ["+254733000002", "+254733000004"]
        assert data["message"].endswith(f"ID: #{incident.short_ref}")

        [log] = client.get(f"/api/incidents/{incident.id}/broadcasts").json()
        assert log["recipients"] == ["+254733000002", "+254733000004"]
        assert log["radius_km"] == 5

    def test_partial_failure_records_only_successes(self, client, incident_with_subscribers, sms_outbox):
        incident = incident_with_subscribers
        sms_outbox.raise_for.add("+254733000002")
        data = client.post(f"/api/incidents/{incident.id}/broadcast", json={"radius_km": 10}).json()
        assert data["recipients"] == ["+254733000004", "+254733000006"]
        assert data["attempted_count"] == 3
        assert data["failed_count"] == 1
        [log] = client.get(f"/api/incidents/{incident.id}/broadcasts").json()
        assert log["recipients"] == ["+254733000004", "+254733000006"]
        assert log["failed_count"] == 1

    @pytest.mark.parametrize("radius", [0, 51, -3])
    def test_invalid_radius(self, client, incident_with_subscribers, radius, sms_outbox):
        incident = incident_with_subscribers
        response = client.post(f"/api/incidents/{incident.id}/broadcast", json={"radius_km": radius})
        assert response.status_code == 400
        assert sms_outbox.messages == []

    def test_custom_message_warning(self, client, incident_with_subscribers, sms_outbox):
        incident = incident_with_subscribers
        text = "Fire moving east. " * 10
        data = client.post(f"/api/incidents/{incident.id}/broadcast",
                           json={"radius_km": 3, "custom_message": text}).json()
        assert data["message"] == text
        assert len(data["warnings"]) == 1
        assert sms_outbox.messages == [("+254733000002", text)]

    def test_no_one_in_range_still_logged(self, client, incident_with_subscribers):
        incident = incident_with_subscribers
        data = client.post(f"/api/incidents/{incident.id}/broadcast", json={"radius_km": 1}).json()
        assert data["recipients"] == []
        assert len(client.get(f"/api/incidents/{incident.id}/broadcasts").json()) == 1
