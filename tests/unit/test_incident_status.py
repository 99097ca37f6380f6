"""
Unit tests for the incident status state machine.
"""
from datetime import datetime, timedelta, timezone

import pytest

from enums import IncidentStatus, RangerStatus
from models import Incident
from services.errors import InvalidTransition
from services.incident_status import allowed_targets, can_transition, transition


pytestmark = pytest.mark.unit

T0 = datetime(2024, 3, 2, 8, 0, tzinfo=timezone.utc)


def make(status='reported', ranger_id=None, **kwargs):
    return Incident(id='inc-1', lat=0.0, lon=0.0, threat_type='fire', severity='high',
                    status=status, assigned_ranger_id=ranger_id, created_at=T0, **kwargs)


class TestTransitionTable:

    def test_reported_to_en_route_rejected(self):
        incident = make()
        with pytest.raises(InvalidTransition):
            transition(incident, IncidentStatus.EN_ROUTE)
        assert incident.status == 'reported'

    def test_full_happy_path(self):
        incident = make()
        incident.assigned_ranger_id = 'r-1'
        transition(incident, 'assigned', now=T0 + timedelta(minutes=1))
        transition(incident, 'en_route', now=T0 + timedelta(minutes=2))
        transition(incident, 'on_scene', now=T0 + timedelta(minutes=30))
        change = transition(incident, 'resolved', now=T0 + timedelta(hours=2))
        assert incident.status == 'resolved'
        assert incident.assigned_at == T0 + timedelta(minutes=1)
        assert incident.responded_at == T0 + timedelta(minutes=2)
        assert incident.resolved_at == T0 + timedelta(hours=2)
        assert change.release_ranger
        assert incident.assigned_ranger_id == 'r-1'

    @pytest.mark.parametrize("terminal", ['resolved', 'false_alarm'])
    @pytest.mark.parametrize("target", list(IncidentStatus))
    def test_terminal_states_have_no_exits(self, terminal, target):
        incident = make(status=terminal, ranger_id='r-1' if terminal == 'resolved' else None)
        with pytest.raises(InvalidTransition):
            transition(incident, target)
        assert incident.status == terminal

    def test_allowed_targets(self):
        assert allowed_targets('assigned') == {IncidentStatus.EN_ROUTE, IncidentStatus.FALSE_ALARM}
        assert can_transition('on_scene', 'resolved')
        assert not can_transition('on_scene', 'nonsense')
        assert not can_transition('nonsense', 'resolved')

    def test_unknown_target(self):
        with pytest.raises(InvalidTransition):
            transition(make(), 'exploded')


class TestPreconditionsAndStamps:

    def test_assigned_requires_ranger(self):
        incident = make()
        with pytest.raises(InvalidTransition) as exc:
            transition(incident, 'assigned')
        assert "no ranger assigned" in str(exc.value)
        assert incident.status == 'reported'

    def test_responded_at_stamped_once(self):
        incident = make(status='assigned', ranger_id='r-1', assigned_at=T0)
        first = transition(incident, 'en_route', now=T0 + timedelta(minutes=5))
        assert first.ranger_status == RangerStatus.EN_ROUTE
        second = transition(incident, 'on_scene', now=T0 + timedelta(minutes=40))
        assert second.ranger_status == RangerStatus.ON_SCENE
        assert incident.responded_at == T0 + timedelta(minutes=5)

    def test_timestamps_never_go_backwards(self):
        incident = make(status='assigned', ranger_id='r-1', assigned_at=T0 + timedelta(minutes=10))
        transition(incident, 'en_route', now=T0)
        assert incident.responded_at == T0 + timedelta(minutes=10)

    def test_false_alarm_from_assigned_releases_ranger(self):
        incident = make(status='assigned', ranger_id='r-1', assigned_at=T0, eta_minutes=7)
        change = transition(incident, 'false_alarm')
        assert change.release_ranger
        assert change.ranger_id == 'r-1'
        assert incident.assigned_ranger_id is None
        assert incident.eta_minutes is None

    def test_false_alarm_from_reported(self):
        incident = make()
        change = transition(incident, 'false_alarm')
        assert not change.release_ranger
        assert incident.status == 'false_alarm'
