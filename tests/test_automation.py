"""Automation Rule Evaluator: decision table and vendor policy."""

from types import SimpleNamespace

import pytest

from caseflow.services.automation import (
    REFUSAL_SENDER_UNIDENTIFIED,
    REFUSAL_VENDOR_UNRESOLVED,
    ActiveCase,
    EventKind,
    InboundEvent,
    Outcome,
    decide,
)
from caseflow.services.journey_config import JourneyConfig
from caseflow.services.state_machine import DEFAULT_TEMPLATE_STATES, build_state_machine

SENDER = "+5511999990000"


class FakeResolver:
    """In-memory vendor resolver."""

    def __init__(self, known=None):
        self.vendors = dict(known or {})
        self.created = []

    def resolve(self, sender_id):
        return self.vendors.get(sender_id)

    def create_from_sender(self, sender_id):
        vendor = SimpleNamespace(id=100 + len(self.created), phone=sender_id)
        self.vendors[sender_id] = vendor
        self.created.append(vendor)
        return vendor


def _config(**automation):
    return JourneyConfig.from_dict({"automation": automation})


@pytest.fixture()
def sm():
    return build_state_machine(DEFAULT_TEMPLATE_STATES, default="new")


def _event(kind, **kwargs):
    return InboundEvent(kind=kind, sender_id=kwargs.pop("sender_id", SENDER), **kwargs)


class TestText:
    def test_existing_case_records_only(self, sm):
        d = decide(_event(EventKind.TEXT, text="hi"), _config(), sm, ActiveCase(7, "in_progress"), FakeResolver())
        assert d.outcome == Outcome.RECORD_ON_CASE
        assert d.case_id == 7
        assert d.transition_to is None

    def test_create_case_disabled_logs_only(self, sm):
        resolver = FakeResolver()
        d = decide(_event(EventKind.TEXT, text="hi"), _config(), sm, None, resolver)
        assert d.outcome == Outcome.NO_ACTION
        assert resolver.created == []

    def test_creates_in_configured_state(self, sm):
        cfg = _config(on_text={"create_case": True, "initial_state": "In Progress"})
        d = decide(_event(EventKind.TEXT), cfg, sm, None, FakeResolver())
        assert d.outcome == Outcome.CREATE_CASE
        assert d.initial_state == "in_progress"

    def test_creates_in_default_when_unconfigured(self, sm):
        cfg = _config(on_text={"create_case": True})
        d = decide(_event(EventKind.TEXT), cfg, sm, None, FakeResolver())
        assert d.initial_state == "new"

    def test_require_vendor_without_auto_create_refuses(self, sm):
        cfg = _config(
            on_text={"create_case": True},
            conversations={"require_vendor": True, "auto_create_vendor": False},
        )
        resolver = FakeResolver()
        d = decide(_event(EventKind.TEXT), cfg, sm, None, resolver)
        assert d.outcome == Outcome.REFUSED
        assert d.refused
        assert d.refusal == REFUSAL_VENDOR_UNRESOLVED
        assert SENDER in d.reason
        assert resolver.created == []

    def test_require_vendor_satisfied_by_auto_create(self, sm):
        cfg = _config(
            on_text={"create_case": True},
            conversations={"require_vendor": True, "auto_create_vendor": True},
        )
        resolver = FakeResolver()
        d = decide(_event(EventKind.TEXT), cfg, sm, None, resolver)
        assert d.outcome == Outcome.CREATE_CASE
        assert d.vendor_created is True
        assert d.vendor is resolver.created[0]

    def test_known_vendor_is_reused(self, sm):
        vendor = SimpleNamespace(id=5)
        resolver = FakeResolver({SENDER: vendor})
        cfg = _config(on_text={"create_case": True}, conversations={"require_vendor": True})
        d = decide(_event(EventKind.TEXT), cfg, sm, None, resolver)
        assert d.vendor is vendor
        assert d.vendor_created is False
        assert resolver.created == []

    def test_no_vendor_allowed_when_not_required(self, sm):
        cfg = _config(on_text={"create_case": True}, conversations={"auto_create_vendor": False})
        d = decide(_event(EventKind.TEXT), cfg, sm, None, FakeResolver())
        assert d.outcome == Outcome.CREATE_CASE
        assert d.vendor is None


class TestImage:
    def test_existing_case_attaches(self, sm):
        d = decide(_event(EventKind.IMAGE, media_url="u"), _config(), sm, ActiveCase(3, "new"), FakeResolver())
        assert d.outcome == Outcome.RECORD_ON_CASE
        assert d.case_id == 3

    def test_always_creates_and_signals_pendencies(self, sm):
        cfg = _config(on_image={"create_default_pendencies": True})
        d = decide(_event(EventKind.IMAGE, media_url="u"), cfg, sm, None, FakeResolver())
        assert d.outcome == Outcome.CREATE_CASE
        assert d.initial_state == "new"
        assert d.seed_default_pendencies is True

    def test_configured_initial_state(self, sm):
        cfg = _config(on_image={"initial_state": "ready_for_review"})
        d = decide(_event(EventKind.IMAGE), cfg, sm, None, FakeResolver())
        assert d.initial_state == "ready_for_review"
        assert d.seed_default_pendencies is False

    def test_vendor_policy_applies_to_image(self, sm):
        cfg = _config(conversations={"require_vendor": True, "auto_create_vendor": False})
        d = decide(_event(EventKind.IMAGE), cfg, sm, None, FakeResolver())
        assert d.outcome == Outcome.REFUSED


class TestLocation:
    def test_next_state_requests_transition(self, sm):
        cfg = _config(on_location={"next_state": "ready_for_review"})
        d = decide(_event(EventKind.LOCATION, location={"lat": 1, "lng": 2}), cfg, sm,
                   ActiveCase(9, "in_progress"), FakeResolver())
        assert d.outcome == Outcome.TRANSITION_CASE
        assert d.current_state == "in_progress"
        assert d.transition_to == "ready_for_review"

    def test_no_next_state_records(self, sm):
        d = decide(_event(EventKind.LOCATION), _config(), sm, ActiveCase(9, "in_progress"), FakeResolver())
        assert d.outcome == Outcome.RECORD_ON_CASE

    def test_next_state_equal_to_current_records(self, sm):
        cfg = _config(on_location={"next_state": "in_progress"})
        d = decide(_event(EventKind.LOCATION), cfg, sm, ActiveCase(9, "in_progress"), FakeResolver())
        assert d.outcome == Outcome.RECORD_ON_CASE

    def test_no_case_and_create_disabled(self, sm):
        d = decide(_event(EventKind.LOCATION), _config(), sm, None, FakeResolver())
        assert d.outcome == Outcome.NO_ACTION

    def test_no_case_creates_when_enabled(self, sm):
        cfg = _config(on_location={"create_case": True, "initial_state": "confirmed"})
        d = decide(_event(EventKind.LOCATION), cfg, sm, None, FakeResolver())
        assert d.outcome == Outcome.CREATE_CASE
        assert d.initial_state == "confirmed"


class TestTotality:
    @pytest.mark.parametrize("kind", list(EventKind))
    @pytest.mark.parametrize("existing", [None, ActiveCase(1, "new")])
    def test_every_combination_yields_a_decision(self, sm, kind, existing):
        d = decide(_event(kind), JourneyConfig(), sm, existing, None)
        assert isinstance(d.outcome, Outcome)
        assert d.to_dict()["event_kind"] == kind.value

    def test_string_kind_accepted(self, sm):
        d = decide(InboundEvent(kind="image", sender_id=SENDER), JourneyConfig(), sm, None, None)
        assert d.outcome == Outcome.CREATE_CASE


class TestUnidentifiedSender:
    @pytest.mark.parametrize("kind,automation", [
        (EventKind.TEXT, {"on_text": {"create_case": True}}),
        (EventKind.IMAGE, {}),
        (EventKind.LOCATION, {"on_location": {"create_case": True}}),
    ])
    def test_never_opens_a_case(self, sm, kind, automation):
        resolver = FakeResolver()
        d = decide(_event(kind, sender_id=None), _config(**automation), sm, None, resolver)
        assert d.outcome == Outcome.REFUSED
        assert d.refusal == REFUSAL_SENDER_UNIDENTIFIED
        assert resolver.created == []

    def test_text_without_create_case_still_logs_only(self, sm):
        d = decide(_event(EventKind.TEXT, sender_id=None), _config(), sm, None, FakeResolver())
        assert d.outcome == Outcome.NO_ACTION
