"""
Incident Status State Machine

    reported -> assigned -> en_route -> on_scene -> resolved
    reported | assigned -> false_alarm

resolved and false_alarm are terminal. transition() validates first and
only then touches the incident, so a rejected request leaves it unchanged.

Ranger-side effects are returned to the caller (release_ranger,
ranger_status) rather than performed here: the incident and ranger rows
must be written together.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from enums import IncidentStatus, RangerStatus
from services.errors import InvalidTransition
from settings_helper import ensure_utc, utc_now

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[IncidentStatus, FrozenSet[IncidentStatus]] = {
    IncidentStatus.REPORTED: frozenset({IncidentStatus.ASSIGNED, IncidentStatus.FALSE_ALARM}),
    IncidentStatus.ASSIGNED: frozenset({IncidentStatus.EN_ROUTE, IncidentStatus.FALSE_ALARM}),
    IncidentStatus.EN_ROUTE: frozenset({IncidentStatus.ON_SCENE}),
    IncidentStatus.ON_SCENE: frozenset({IncidentStatus.RESOLVED}),
    IncidentStatus.RESOLVED: frozenset(),
    IncidentStatus.FALSE_ALARM: frozenset(),
}

TERMINAL = frozenset({IncidentStatus.RESOLVED, IncidentStatus.FALSE_ALARM})

# Statuses in which assigned_ranger_id must be set
RANGER_HELD = frozenset({
    IncidentStatus.ASSIGNED,
    IncidentStatus.EN_ROUTE,
    IncidentStatus.ON_SCENE,
    IncidentStatus.RESOLVED,
})


@dataclass
class StatusChange:
    old_status: IncidentStatus
    new_status: IncidentStatus
    changes: Dict[str, object] = field(default_factory=dict)
    ranger_id: Optional[str] = None
    release_ranger: bool = False                  # clear ranger.current_incident_id, make available
    ranger_status: Optional[RangerStatus] = None  # mirror onto the ranger when set


def parse_status(value) -> IncidentStatus:
    try:
        return IncidentStatus(value)
    except ValueError:
        raise InvalidTransition(value, None, reason=f"unknown status '{value}'")


def allowed_targets(current) -> FrozenSet[IncidentStatus]:
    return TRANSITIONS[parse_status(current)]


def can_transition(current, target) -> bool:
    try:
        return IncidentStatus(target) in allowed_targets(current)
    except (ValueError, InvalidTransition):
        return False


def _stamp(incident, now: datetime) -> datetime:
    """Keep created <= assigned <= responded <= resolved under clock skew."""
    latest = now
    for attr in ("created_at", "assigned_at", "responded_at"):
        value = ensure_utc(getattr(incident, attr, None))
        if value is not None and value > latest:
            latest = value
    return latest


def transition(incident, target, now: Optional[datetime] = None) -> StatusChange:
    """
    Move incident to target status, stamping lifecycle times.
    Raises InvalidTransition (incident untouched) for anything not in the table.
    """
    current = parse_status(incident.status)
    try:
        target = IncidentStatus(target)
    except ValueError:
        raise InvalidTransition(current, target, reason="unknown status")
    
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(current, target)
    
    if target == IncidentStatus.ASSIGNED and not incident.assigned_ranger_id:
        raise InvalidTransition(current, target, reason="no ranger assigned")
    
    now = ensure_utc(now) or utc_now()
    change = StatusChange(old_status=current, new_status=target, ranger_id=incident.assigned_ranger_id)
    changes = change.changes
    changes["status"] = target.value
    
    if target == IncidentStatus.ASSIGNED:
        if incident.assigned_at is None:
            changes["assigned_at"] = _stamp(incident, now)
    
    elif target in (IncidentStatus.EN_ROUTE, IncidentStatus.ON_SCENE):
        if incident.responded_at is None:
            changes["responded_at"] = _stamp(incident, now)
        change.ranger_status = RangerStatus(target.value)
    
    elif target == IncidentStatus.RESOLVED:
        changes["resolved_at"] = _stamp(incident, now)
        change.release_ranger = bool(incident.assigned_ranger_id)
    
    elif target == IncidentStatus.FALSE_ALARM:
        if incident.assigned_ranger_id:
            # Only resolved keeps the ranger reference once the incident closes
            changes["assigned_ranger_id"] = None
            changes["eta_minutes"] = None
            change.release_ranger = True
    
    for attr, value in changes.items():
        setattr(incident, attr, value)
    
    logger.info(f"Incident {incident.id}: {current.value} -> {target.value}")
    return change
