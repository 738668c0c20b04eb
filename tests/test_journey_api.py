"""Journey catalog and tenant configuration API."""

import json

from caseflow.models import db
from caseflow.models.case import Case, TimelineEvent
from caseflow.models.journey import TenantJourney
from caseflow.services import case_service, journey_service


# Uses shared fixtures from conftest.py: client, session (autouse), default_tenant, journey


def _create_journey(client, **kwargs):
    payload = {"key": "Field Visit", "name": "Field Visit"}
    payload.update(kwargs)
    return client.post("/api/v1/journeys", json=payload)


def _config_url(tenant_id, journey_id):
    return f"/api/v1/tenants/{tenant_id}/journeys/{journey_id}/config"


# ═════════════════════════════════════════════════════════════════
# 1. Templates
# ═════════════════════════════════════════════════════════════════
class TestJourneyTemplates:
    def test_create_with_default_states(self, client):
        r = _create_journey(client)
        assert r.status_code == 201
        d = r.get_json()
        assert d["key"] == "field_visit"
        assert d["state_machine"]["states"] == [
            "new", "in_progress", "ready_for_review", "confirmed", "finalized",
        ]
        assert d["state_machine"]["default"] == "new"

    def test_create_with_custom_states(self, client):
        r = _create_journey(client, states=["Open", "Waiting Customer", "open", "Closed"],
                            default="Waiting Customer")
        sm = r.get_json()["state_machine"]
        assert sm["states"] == ["open", "waiting_customer", "closed"]
        assert sm["default"] == "waiting_customer"

    def test_duplicate_key_conflicts(self, client):
        _create_journey(client)
        r = _create_journey(client, name="Other")
        assert r.status_code == 409
        assert r.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_missing_name(self, client):
        r = _create_journey(client, name="")
        assert r.status_code == 400
        assert "name" in r.get_json()["details"]

    def test_fewer_than_two_states_refused(self, client):
        r = _create_journey(client, states=["Only", "only", "  "])
        assert r.status_code == 422
        d = r.get_json()
        assert d["code"] == "ERR_TEMPLATE_INVALID"
        assert d["details"]["states"] == ["only"]

    def test_preview_does_not_save(self, client):
        r = client.post("/api/v1/journeys/state-machine/preview",
                        json={"states": ["A", "a"], "default": "b"})
        assert r.status_code == 200
        d = r.get_json()
        assert d["state_machine"] == {"states": ["a"], "default": "a"}
        assert d["valid"] is False
        assert client.get("/api/v1/journeys").get_json() == []

    def test_get_missing_journey(self, client):
        r = client.get("/api/v1/journeys/999")
        assert r.status_code == 404
        assert r.get_json()["code"] == "ERR_NOT_FOUND"

    def test_sectors(self, client):
        r = client.post("/api/v1/journeys/sectors", json={"name": "Retail"})
        assert r.status_code == 201
        sid = r.get_json()["id"]
        _create_journey(client, sector_id=sid)
        assert len(client.get(f"/api/v1/journeys?sector_id={sid}").get_json()) == 1


# ═════════════════════════════════════════════════════════════════
# 2. State list primitives
# ═════════════════════════════════════════════════════════════════
class TestStatePrimitives:
    def test_append(self, client, journey):
        r = client.post(f"/api/v1/journeys/{journey.id}/states", json={"label": "On Hold"})
        assert r.status_code == 200
        assert r.get_json()["state_machine"]["states"][-1] == "on_hold"

    def test_append_unusable_label(self, client, journey):
        r = client.post(f"/api/v1/journeys/{journey.id}/states", json={"label": "!!!"})
        assert r.status_code == 400

    def test_remove_default_rederives(self, client, journey):
        r = client.delete(f"/api/v1/journeys/{journey.id}/states/new")
        sm = r.get_json()["state_machine"]
        assert "new" not in sm["states"]
        assert sm["default"] == "in_progress"

    def test_remove_unknown_state(self, client, journey):
        r = client.delete(f"/api/v1/journeys/{journey.id}/states/archived")
        assert r.status_code == 422
        assert r.get_json()["code"] == "ERR_UNKNOWN_STATE"

    def test_cannot_go_below_two_states(self, client):
        jid = _create_journey(client, states=["a", "b"]).get_json()["id"]
        r = client.delete(f"/api/v1/journeys/{jid}/states/a")
        assert r.status_code == 422
        assert r.get_json()["code"] == "ERR_TEMPLATE_INVALID"
        assert client.get(f"/api/v1/journeys/{jid}").get_json()["state_machine"]["states"] == ["a", "b"]

    def test_move(self, client, journey):
        r = client.post(f"/api/v1/journeys/{journey.id}/states/move",
                        json={"from_index": 4, "to_index": 0})
        assert r.get_json()["state_machine"]["states"][0] == "finalized"

    def test_move_requires_integers(self, client, journey):
        r = client.post(f"/api/v1/journeys/{journey.id}/states/move",
                        json={"from_index": "4", "to_index": 0})
        assert r.status_code == 422

    def test_set_default_and_label(self, client, journey):
        r = client.put(f"/api/v1/journeys/{journey.id}/default-state", json={"state": "Confirmed"})
        assert r.get_json()["state_machine"]["default"] == "confirmed"
        r = client.put(f"/api/v1/journeys/{journey.id}/states/confirmed/label",
                       json={"label": "Confirmado"})
        assert r.get_json()["state_machine"]["labels"] == {"confirmed": "Confirmado"}

    def test_replace_states(self, client, journey):
        r = client.put(f"/api/v1/journeys/{journey.id}/states",
                       json={"states": ["New", "Done", "new"], "default": "done"})
        sm = r.get_json()["state_machine"]
        assert sm["states"] == ["new", "done"]
        assert sm["default"] == "done"


class TestRemovedStateMigration:
    def test_open_cases_move_to_first_state(self, client, default_tenant, journey):
        case = case_service.create_case(default_tenant.id, journey, state="ready_for_review")
        untouched = case_service.create_case(default_tenant.id, journey, state="confirmed")

        r = client.delete(f"/api/v1/journeys/{journey.id}/states/ready_for_review")
        assert r.status_code == 200

        assert db.session.get(Case, case.id).state == "new"
        assert db.session.get(Case, untouched.id).state == "confirmed"
        events = TimelineEvent.query.filter_by(case_id=case.id, event_type="state_migrated").all()
        assert len(events) == 1
        assert events[0].meta["from_state"] == "ready_for_review"

    def test_tenant_config_is_not_rewritten(self, default_tenant, journey):
        journey_service.update_status_config(
            default_tenant.id, journey.id, "confirmed", {"required_case_fields": ["phone"]},
        )
        journey_service.remove_journey_state(journey.id, "confirmed")
        tj = journey_service.get_tenant_journey(default_tenant.id, journey.id)
        assert "confirmed" in tj.config["status_configs"]


# ═════════════════════════════════════════════════════════════════
# 3. Tenant activation & configuration
# ═════════════════════════════════════════════════════════════════
class TestTenantActivation:
    def test_enable_creates_activation_lazily(self, client, default_tenant, journey):
        tid = default_tenant.id
        listed = client.get(f"/api/v1/tenants/{tid}/journeys").get_json()
        assert listed[0]["has_activation"] is False

        r = client.put(f"/api/v1/tenants/{tid}/journeys/{journey.id}/enabled", json={"enabled": True})
        assert r.status_code == 200
        assert r.get_json()["enabled"] is True
        assert r.get_json()["config"] == {}

    def test_disable_keeps_config(self, client, default_tenant, journey):
        tid = default_tenant.id
        client.patch(_config_url(tid, journey.id), json={"automation": {"ocr": {"enabled": True}}})
        r = client.put(f"/api/v1/tenants/{tid}/journeys/{journey.id}/enabled", json={"enabled": False})
        assert r.get_json()["enabled"] is False
        assert r.get_json()["config"]["automation"]["ocr"]["enabled"] is True
        assert TenantJourney.query.count() == 1

    def test_enabled_flag_required(self, client, default_tenant, journey):
        r = client.put(f"/api/v1/tenants/{default_tenant.id}/journeys/{journey.id}/enabled", json={})
        assert r.status_code == 422

    def test_unknown_tenant(self, client, journey):
        r = client.get("/api/v1/tenants/999/journeys")
        assert r.status_code == 404


class TestConfigPatch:
    def test_patches_merge_without_clobbering(self, client, default_tenant, journey):
        url = _config_url(default_tenant.id, journey.id)
        client.patch(url, json={"automation": {"on_text": {"create_case": True}}})
        r = client.patch(url, json={"automation": {"on_location": {"next_state": "Ready for Review"}}})
        assert r.status_code == 200
        stored = r.get_json()["stored"]["automation"]
        assert stored["on_text"] == {"create_case": True}
        assert stored["on_location"] == {"next_state": "ready_for_review"}

    def test_effective_config_fills_defaults(self, client, default_tenant, journey):
        r = client.get(_config_url(default_tenant.id, journey.id))
        effective = r.get_json()["effective"]["automation"]
        assert effective["conversations"] == {"auto_create_vendor": True, "require_vendor": False}
        assert effective["on_text"]["create_case"] is False
        assert effective["ocr"]["provider"] == "google_vision"

    def test_unknown_state_reference_refused(self, client, default_tenant, journey):
        r = client.patch(_config_url(default_tenant.id, journey.id),
                         json={"automation": {"on_image": {"initial_state": "archived"}}})
        assert r.status_code == 422
        d = r.get_json()
        assert d["code"] == "ERR_UNKNOWN_STATE"
        assert d["details"]["unknown_states"] == {"automation.on_image.initial_state": "archived"}
        assert journey_service.get_tenant_journey(default_tenant.id, journey.id) is None

    def test_non_object_body(self, client, default_tenant, journey):
        r = client.patch(_config_url(default_tenant.id, journey.id), json=["x"])
        assert r.status_code == 422

    def test_merges_onto_freshly_read_row(self, default_tenant, tenant_journey, journey):
        journey_service.apply_config_patch(
            default_tenant.id, journey.id, {"automation": {"on_text": {"create_case": True}}},
        )
        # A concurrent editor writes straight to the row.
        db.session.execute(
            db.text("UPDATE tenant_journeys SET config = :c WHERE id = :id"),
            {"c": json.dumps({"automation": {"on_text": {"create_case": True}},
                              "presence": {"enabled": True}}),
             "id": tenant_journey.id},
        )
        db.session.commit()

        activation, refusal = journey_service.apply_config_patch(
            default_tenant.id, journey.id, {"automation": {"ocr": {"enabled": True}}},
        )
        assert refusal is None
        assert activation.config["presence"] == {"enabled": True}
        assert activation.config["automation"]["on_text"] == {"create_case": True}
        assert activation.config["automation"]["ocr"] == {"enabled": True}


class TestStatusConfigs:
    def test_put_and_prune(self, client, default_tenant, journey):
        url = f"/api/v1/tenants/{default_tenant.id}/journeys/{journey.id}/status-configs/Confirmed"
        r = client.put(url, json={
            "responsible_id": "user-7",
            "required_case_fields": ["Phone", "phone"],
            "mandatory_tasks": [{"description": "Check stock"}],
        })
        assert r.status_code == 200
        entry = r.get_json()["stored"]["status_configs"]["confirmed"]
        assert entry["required_case_fields"] == ["phone"]
        assert entry["responsible_id"] == "user-7"
        assert entry["mandatory_tasks"][0]["id"].startswith("task_")

        r = client.put(url, json={"required_case_fields": [], "mandatory_tasks": []})
        assert "confirmed" not in r.get_json()["stored"]["status_configs"]
        assert "confirmed" not in r.get_json()["effective"]["status_configs"]

    def test_unknown_state(self, client, default_tenant, journey):
        url = f"/api/v1/tenants/{default_tenant.id}/journeys/{journey.id}/status-configs/shipped"
        r = client.put(url, json={"required_case_fields": ["x"]})
        assert r.status_code == 422
        assert r.get_json()["code"] == "ERR_UNKNOWN_STATE"
