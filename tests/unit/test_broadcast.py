"""
Unit tests for community broadcast selection, message rendering and sending.
"""
import math
from types import SimpleNamespace

import pytest

from models import Incident
from services.broadcast import (
    PartialSendFailure, render_message, select_recipients, send_to_recipients, validate_radius,
)
from services.errors import InvalidRadius
from services.location.distance import EARTH_RADIUS_KM, distance_km


pytestmark = pytest.mark.unit

ORIGIN = (0.0, 0.0)


def subscriber(phone, km):
    return SimpleNamespace(phone_number=phone, lat=0.0, lon=math.degrees(km / EARTH_RADIUS_KM))


@pytest.fixture
def incident():
    return Incident(id='ab12cd34-5678-90ab-cdef-000000000000', lat=0.0, lon=0.0,
                    threat_type='illegal_logging', severity='critical')


class TestSelectRecipients:

    def test_radius_filter_boundary_inclusive(self):
        subs = [subscriber('+1', 1), subscriber('+2', 4.9), subscriber('+3', 5.0),
                subscriber('+4', 5.1), subscriber('+5', 10)]
        boundary = distance_km(ORIGIN, subs[2])
        assert boundary == pytest.approx(5.0)
        assert select_recipients(ORIGIN, boundary, subs) == ['+1', '+2', '+3']

    def test_standard_radius(self):
        subs = [subscriber('+1', 2), subscriber('+2', 4), subscriber('+3', 6)]
        assert select_recipients(ORIGIN, 5, subs) == ['+1', '+2']

    def test_duplicate_numbers_appear_once(self):
        subs = [subscriber('+1', 1), subscriber('+1', 2), subscriber('+2', 3)]
        assert select_recipients(ORIGIN, 5, subs) == ['+1', '+2']

    def test_subscriber_without_phone_skipped(self):
        subs = [subscriber(None, 1), subscriber('+2', 1)]
        assert select_recipients(ORIGIN, 5, subs) == ['+2']

    @pytest.mark.parametrize("radius", [0, -1, 51, None])
    def test_invalid_radius(self, radius):
        with pytest.raises(InvalidRadius):
            select_recipients(ORIGIN, radius, [subscriber('+1', 1)])

    def test_max_radius_allowed(self):
        assert validate_radius(50) == 50.0

    def test_configured_maximum(self):
        with pytest.raises(InvalidRadius):
            validate_radius(30, max_radius_km=25)


class TestRenderMessage:

    def test_default_template(self, incident):
        rendered = render_message(incident)
        assert rendered.text == (
            "FOREST ALERT: ILLEGAL LOGGING reported near you. CRITICAL severity. "
            "Rangers responding. Reply SAFE, NEED_HELP or EVACUATING. ID: #AB12CD34"
        )
        assert not rendered.is_custom
        assert rendered.warnings == []

    def test_custom_message_verbatim(self, incident):
        rendered = render_message(incident, "  Move to the school grounds now  ")
        assert rendered.text == "  Move to the school grounds now  "
        assert rendered.is_custom

    def test_blank_custom_message_uses_template(self, incident):
        assert render_message(incident, "   ").text.startswith("FOREST ALERT")

    def test_long_custom_message_warns_but_is_kept(self, incident):
        long_text = "x" * 200
        rendered = render_message(incident, long_text)
        assert rendered.text == long_text
        assert len(rendered.warnings) == 1
        assert "200 characters" in rendered.warnings[0]

    def test_exactly_at_limit_has_no_warning(self, incident):
        assert render_message(incident, "y" * 160).warnings == []


class TestSendToRecipients:

    def test_all_sent(self):
        outcome = send_to_recipients(['+1', '+2'], "hi", lambda phone, msg: True)
        assert outcome.sent == ['+1', '+2']
        assert outcome.partial_failure is None

    def test_partial_failure_keeps_successes(self):
        calls = []

        def send(phone, msg):
            calls.append(phone)
            if phone == '+2':
                raise TimeoutError("provider timeout")
            return phone != '+3'

        outcome = send_to_recipients(['+1', '+2', '+3', '+4'], "hi", send)
        assert calls == ['+1', '+2', '+3', '+4']
        assert outcome.sent == ['+1', '+4']
        assert outcome.failed == ['+2', '+3']
        assert outcome.partial_failure == PartialSendFailure(attempted=4, sent=2)
        assert outcome.partial_failure.failed == 2

    def test_warnings_carried(self):
        outcome = send_to_recipients([], "hi", lambda p, m: True, warnings=["long"])
        assert outcome.attempted_count == 0
        assert outcome.warnings == ["long"]
