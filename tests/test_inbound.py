"""Inbound dispatch: payload normalization, decisions applied, decision log."""

import pytest

from caseflow.core.exceptions import ValidationError
from caseflow.models import db
from caseflow.models.case import Case, CaseAttachment, Pendency, Vendor
from caseflow.models.decision_log import DecisionLog
from caseflow.services import case_service, journey_service
from caseflow.services.automation import EventKind
from caseflow.services.inbound_service import AUDIO_PLACEHOLDER, detect_type, normalize_payload
from caseflow.utils.phone import normalize_phone

SENDER = "+5511999990000"


# Uses shared fixtures from conftest.py: client, session (autouse), default_tenant,
# journey, tenant_journey


def _inbound(client, tenant_id, payload, journey_key="sales_order"):
    return client.post(f"/api/v1/tenants/{tenant_id}/inbound/{journey_key}", json=payload)


def _configure(tenant_id, journey_id, automation):
    _, refusal = journey_service.apply_config_patch(tenant_id, journey_id, {"automation": automation})
    assert refusal is None


# ═════════════════════════════════════════════════════════════════
# 1. Normalization
# ═════════════════════════════════════════════════════════════════
class TestPhone:
    @pytest.mark.parametrize("raw, expected", [
        ("11999990000", SENDER),
        ("5511999990000", SENDER),
        ("+55 (11) 99999-0000", SENDER),
        ("1133334444", "+551133334444"),
        ("123", None),
        ("", None),
        (None, None),
        ("2738123@lid", None),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_phone(raw) == expected


class TestNormalizePayload:
    @pytest.mark.parametrize("raw, expected", [
        ("ImageMessage", "image"),
        ("photo", "image"),
        ("ptt", "audio"),
        ("audioMessage", "audio"),
        ("location", "location"),
        ("conversation", "text"),
        (None, "text"),
    ])
    def test_detect_type(self, raw, expected):
        assert detect_type(raw) == expected

    def test_nested_data_fields(self):
        event, raw_type = normalize_payload({
            "data": {"type": "image", "from": "11999990000", "mediaUrl": "https://cdn/x.jpg"},
        })
        assert raw_type == "image"
        assert event.kind == EventKind.IMAGE
        assert event.sender_id == SENDER
        assert event.media_url == "https://cdn/x.jpg"

    def test_audio_becomes_text(self):
        event, raw_type = normalize_payload({"type": "ptt", "from": SENDER})
        assert raw_type == "audio"
        assert event.kind == EventKind.TEXT
        assert event.text == AUDIO_PLACEHOLDER

    def test_location_coordinates(self):
        event, _ = normalize_payload({"type": "location", "from": SENDER,
                                      "location": {"latitude": "-23.5", "longitude": -46.6}})
        assert event.location == {"lat": -23.5, "lng": -46.6}

    def test_location_without_coordinates(self):
        with pytest.raises(ValidationError):
            normalize_payload({"type": "location", "from": SENDER})


# ═════════════════════════════════════════════════════════════════
# 2. Dispatch
# ═════════════════════════════════════════════════════════════════
class TestDispatchGuards:
    def test_journey_not_enabled(self, client, default_tenant, journey):
        r = _inbound(client, default_tenant.id, {"type": "image", "from": SENDER})
        assert r.status_code == 422
        assert r.get_json()["code"] == "ERR_JOURNEY_DISABLED"

    def test_unknown_journey(self, client, default_tenant):
        r = _inbound(client, default_tenant.id, {"type": "text"}, journey_key="nope")
        assert r.status_code == 404


class TestImageIntake:
    def test_creates_case_with_attachment_vendor_and_pendencies(self, client, default_tenant,
                                                                 journey, tenant_journey):
        _configure(default_tenant.id, journey.id, {"on_image": {"create_default_pendencies": True}})
        r = _inbound(client, default_tenant.id, {
            "type": "image", "from": "11999990000", "mediaUrl": "https://cdn/order.jpg",
            "senderName": "Ana",
        })
        assert r.status_code == 200
        d = r.get_json()
        assert d["outcome"] == "create_case"
        assert d["decision"]["vendor_created"] is True

        case = db.session.get(Case, d["case_id"])
        assert case.state == "new"
        assert case.sender_id == SENDER
        vendor = Vendor.query.filter_by(phone_e164=SENDER).one()
        assert vendor.display_name == "Ana"
        assert case.assigned_vendor_id == vendor.id
        assert [a.storage_path for a in CaseAttachment.query.filter_by(case_id=case.id)] == [
            "https://cdn/order.jpg",
        ]
        types = {p.type: p.required for p in Pendency.query.filter_by(case_id=case.id)}
        assert types == {"need_location": True, "need_more_pages": False}
        assert DecisionLog.query.count() == 1

    def test_second_image_attaches_to_open_case(self, client, default_tenant, journey, tenant_journey):
        first = _inbound(client, default_tenant.id, {"type": "image", "from": SENDER, "url": "a"})
        second = _inbound(client, default_tenant.id, {"type": "image", "from": SENDER, "url": "b"})
        assert second.get_json()["outcome"] == "record_on_case"
        assert second.get_json()["case_id"] == first.get_json()["case_id"]
        assert Case.query.count() == 1
        assert CaseAttachment.query.count() == 2


class TestTextAndLocation:
    def test_text_without_case_is_logged_only(self, client, default_tenant, journey, tenant_journey):
        r = _inbound(client, default_tenant.id, {"type": "text", "from": SENDER, "text": "hello"})
        d = r.get_json()
        assert d["outcome"] == "no_action"
        assert d["case_id"] is None
        assert Case.query.count() == 0
        assert DecisionLog.query.one().outcome == "no_action"

    def test_text_answers_oldest_open_pendency(self, client, default_tenant, journey, tenant_journey):
        _configure(default_tenant.id, journey.id, {"on_image": {"create_default_pendencies": True}})
        _inbound(client, default_tenant.id, {"type": "image", "from": SENDER})
        r = _inbound(client, default_tenant.id, {"type": "text", "from": SENDER, "text": "only 1 page"})
        assert r.get_json()["outcome"] == "record_on_case"
        answered = Pendency.query.filter_by(status="answered").one()
        assert answered.type == "need_location"
        assert answered.answered_text == "only 1 page"

    def test_vendor_refusal_is_recorded(self, client, default_tenant, journey, tenant_journey):
        _configure(default_tenant.id, journey.id, {
            "on_text": {"create_case": True},
            "conversations": {"require_vendor": True, "auto_create_vendor": False},
        })
        r = _inbound(client, default_tenant.id, {"type": "text", "from": SENDER, "text": "hi"})
        assert r.status_code == 422
        d = r.get_json()
        assert d["code"] == "ERR_AUTOMATION_REFUSED"
        assert SENDER in d["error"]
        log = DecisionLog.query.one()
        assert log.outcome == "refused"
        assert log.refusal == "vendor_unresolved"
        assert Case.query.count() == 0
        assert Vendor.query.count() == 0

    def test_location_moves_case_to_next_state(self, client, default_tenant, journey, tenant_journey):
        _configure(default_tenant.id, journey.id, {"on_location": {"next_state": "ready_for_review"}})
        journey_service.update_status_config(default_tenant.id, journey.id, "in_progress",
                                             {"required_case_fields": ["location"]})
        case = case_service.create_case(default_tenant.id, journey, state="in_progress", sender_id=SENDER)

        r = _inbound(client, default_tenant.id, {
            "type": "location", "from": SENDER, "latitude": -23.5, "longitude": -46.6,
        })
        d = r.get_json()
        assert d["outcome"] == "transition_case"
        assert d["decision"]["transition"] == {"to_state": "ready_for_review", "moved": True}
        case = db.session.get(Case, case.id)
        assert case.state == "ready_for_review"
        assert case.field_values()["location"] == {"lat": -23.5, "lng": -46.6}

    def test_location_transition_blocked_by_gate(self, client, default_tenant, journey, tenant_journey):
        _configure(default_tenant.id, journey.id, {"on_location": {"next_state": "ready_for_review"}})
        journey_service.update_status_config(default_tenant.id, journey.id, "in_progress",
                                             {"required_case_fields": ["invoice_number"]})
        case = case_service.create_case(default_tenant.id, journey, state="in_progress", sender_id=SENDER)

        r = _inbound(client, default_tenant.id, {
            "type": "location", "from": SENDER, "latitude": 1, "longitude": 2,
        })
        transition = r.get_json()["decision"]["transition"]
        assert transition["moved"] is False
        assert transition["code"] == "ERR_GATE_BLOCKED"
        assert transition["details"]["missing_fields"] == ["invoice_number"]
        assert db.session.get(Case, case.id).state == "in_progress"

    def test_decisions_listing(self, client, default_tenant, journey, tenant_journey):
        _inbound(client, default_tenant.id, {"type": "text", "from": SENDER})
        _inbound(client, default_tenant.id, {"type": "image", "from": SENDER})
        r = client.get(f"/api/v1/tenants/{default_tenant.id}/inbound/decisions?outcome=create_case")
        d = r.get_json()
        assert d["total"] == 1
        assert d["items"][0]["event_kind"] == "image"


# ═════════════════════════════════════════════════════════════════
# 4. Vendor registration
# ═════════════════════════════════════════════════════════════════
class TestVendors:
    def test_registered_vendor_satisfies_require_vendor(self, client, default_tenant, journey,
                                                        tenant_journey):
        r = client.post(f"/api/v1/tenants/{default_tenant.id}/vendors",
                        json={"phone": "(11) 99999-0000", "display_name": "Loja"})
        assert r.status_code == 201
        assert r.get_json()["phone_e164"] == SENDER

        _configure(default_tenant.id, journey.id, {
            "conversations": {"require_vendor": True, "auto_create_vendor": False},
        })
        r = _inbound(client, default_tenant.id, {"type": "image", "from": SENDER})
        assert r.status_code == 200
        assert r.get_json()["outcome"] == "create_case"
        assert Vendor.query.count() == 1

    def test_duplicate_phone_conflicts(self, client, default_tenant):
        url = f"/api/v1/tenants/{default_tenant.id}/vendors"
        assert client.post(url, json={"phone": SENDER}).status_code == 201
        assert client.post(url, json={"phone": SENDER}).status_code == 409
        assert len(client.get(url).get_json()) == 1

    def test_unusable_phone_is_rejected(self, client, default_tenant):
        r = client.post(f"/api/v1/tenants/{default_tenant.id}/vendors", json={"phone": "123"})
        assert r.status_code == 400
        assert r.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_inactive_vendor_is_reactivated_on_auto_create(self, client, default_tenant, journey,
                                                           tenant_journey):
        db.session.add(Vendor(tenant_id=default_tenant.id, phone_e164=SENDER, active=False))
        db.session.commit()

        r = _inbound(client, default_tenant.id, {"type": "image", "from": SENDER})
        assert r.status_code == 200
        assert r.get_json()["outcome"] == "create_case"
        vendor = Vendor.query.one()
        assert vendor.active is True
        assert Case.query.one().assigned_vendor_id == vendor.id

    def test_inactive_vendor_without_auto_create_is_refused(self, client, default_tenant, journey,
                                                            tenant_journey):
        db.session.add(Vendor(tenant_id=default_tenant.id, phone_e164=SENDER, active=False))
        db.session.commit()
        _configure(default_tenant.id, journey.id, {
            "conversations": {"require_vendor": True, "auto_create_vendor": False},
        })

        r = _inbound(client, default_tenant.id, {"type": "image", "from": SENDER})
        assert r.status_code == 422
        assert DecisionLog.query.one().refusal == "vendor_unresolved"
        assert Vendor.query.one().active is False
        assert Case.query.count() == 0


class TestUnidentifiedSender:
    def test_does_not_open_cases(self, client, default_tenant, journey, tenant_journey):
        _configure(default_tenant.id, journey.id, {"on_text": {"create_case": True}})
        payload = {"type": "text", "from": "2738123@lid", "text": "hello"}

        for _ in range(2):
            r = _inbound(client, default_tenant.id, payload)
            assert r.status_code == 422
            assert r.get_json()["code"] == "ERR_AUTOMATION_REFUSED"

        assert Case.query.count() == 0
        logs = DecisionLog.query.all()
        assert [log.refusal for log in logs] == ["sender_unidentified", "sender_unidentified"]
        assert logs[0].sender_id is None
