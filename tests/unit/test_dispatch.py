"""
Unit tests for nearest-ranger matching and ETA.
"""
import math
import typing
from types import SimpleNamespace

import pytest

from models import Incident, Ranger
from services.dispatch import (
    DispatchMatch, RangerLike, assign_nearest_ranger, compute_eta_minutes, is_dispatchable,
    match_specific_ranger, render_dispatch_message,
)
from services.errors import NoRangerAvailable
from services.location.distance import EARTH_RADIUS_KM


pytestmark = pytest.mark.unit


def km_east(km):
    """Point on the equator km east of (0, 0)."""
    return 0.0, math.degrees(km / EARTH_RADIUS_KM)


def ranger(ranger_id, km, status='available', current_incident_id=None):
    lat, lon = km_east(km)
    return SimpleNamespace(id=ranger_id, name=f'Ranger {ranger_id}', lat=lat, lon=lon,
                           status=status, current_incident_id=current_incident_id)


class TestComputeEta:

    @pytest.mark.parametrize("distance,expected", [(0, 0), (20, 30), (3, 5), (12, 18), (0.1, 1)])
    def test_rounds_up_to_whole_minutes(self, distance, expected):
        assert compute_eta_minutes(distance) == expected

    def test_custom_speed(self):
        assert compute_eta_minutes(10, average_speed_kmh=5) == 120

    def test_speed_must_be_positive(self):
        with pytest.raises(ValueError):
            compute_eta_minutes(10, average_speed_kmh=0)


class TestAssignNearestRanger:

    def test_off_duty_ranger_excluded_even_if_closer(self):
        candidates = [ranger('a', 10), ranger('b', 2.2), ranger('c', 1, status='off_duty')]
        match = assign_nearest_ranger((0.0, 0.0), candidates)
        assert match.ranger.id == 'b'
        assert match.distance_km == pytest.approx(2.2, abs=1e-6)
        assert match.eta_minutes == 4

    def test_no_available_rangers(self):
        candidates = [ranger('a', 1, status='off_duty'), ranger('b', 2, status='on_scene')]
        with pytest.raises(NoRangerAvailable) as exc:
            assign_nearest_ranger((0.0, 0.0), candidates)
        assert str(exc.value) == "No available rangers"

    def test_empty_candidates(self):
        with pytest.raises(NoRangerAvailable):
            assign_nearest_ranger((0.0, 0.0), [])

    def test_tie_goes_to_lowest_id(self):
        candidates = [ranger('zulu', 5), ranger('alpha', 5), ranger('mike', 5)]
        assert assign_nearest_ranger((0.0, 0.0), candidates).ranger.id == 'alpha'
        assert assign_nearest_ranger((0.0, 0.0), list(reversed(candidates))).ranger.id == 'alpha'

    def test_ranger_holding_an_incident_is_skipped(self):
        candidates = [ranger('a', 1, current_incident_id='inc-1'), ranger('b', 4)]
        assert assign_nearest_ranger((0.0, 0.0), candidates).ranger.id == 'b'

    def test_unknown_status_is_not_dispatchable(self):
        assert not is_dispatchable(ranger('a', 1, status='napping'))

    def test_accepts_incident_object_as_location(self):
        incident = SimpleNamespace(lat=0.0, lon=0.0)
        assert assign_nearest_ranger(incident, [ranger('a', 3)]).eta_minutes == 5

    def test_custom_speed_changes_eta_not_choice(self):
        match = assign_nearest_ranger((0.0, 0.0), [ranger('a', 11.5), ranger('b', 20)], average_speed_kmh=20)
        assert match.ranger.id == 'a'
        assert match.eta_minutes == 35

    def test_match_carries_the_ranger(self):
        near = ranger('r-near', 2)
        match = assign_nearest_ranger((0.0, 0.0), [ranger('r-far', 9), near])
        assert match.ranger is near
        assert typing.get_type_hints(DispatchMatch)['ranger'] is RangerLike

    def test_model_ranger_has_matched_fields(self):
        for field in typing.get_type_hints(RangerLike):
            assert hasattr(Ranger, field)


class TestManualDispatch:

    def test_specific_ranger(self):
        match = match_specific_ranger((0.0, 0.0), ranger('a', 11))
        assert match.eta_minutes == 17

    def test_specific_ranger_must_be_free(self):
        with pytest.raises(NoRangerAvailable):
            match_specific_ranger((0.0, 0.0), ranger('a', 1, current_incident_id='x'))


class TestDispatchMessage:

    def test_message_contents(self):
        incident = Incident(id='ab12cd34-0000-0000-0000-000000000000', lat=-1.29, lon=36.82,
                            threat_type='charcoal_production', severity='high')
        match = DispatchMatch(ranger=ranger('a', 3), distance_km=3.04, eta_minutes=5)
        text = render_dispatch_message(incident, match)
        assert text.startswith("RANGER DISPATCH: CHARCOAL PRODUCTION incident")
        assert "Severity: HIGH" in text
        assert "Location: -1.2900, 36.8200" in text
        assert "Distance: 3.0km. ETA: 5 min." in text
        assert text.endswith("ID: #AB12CD34")
