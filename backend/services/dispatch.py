"""
Ranger Dispatch Matcher

Picks the nearest available ranger for an incident and estimates arrival.

Pure computation over a caller-supplied candidate list. Writing the result
(incident assignment fields + ranger link) is the caller's job and must be a
conditional update guarded on the incident still being unassigned; see
incident_helpers.claim_incident_for_ranger.
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from enums import RangerStatus
from services.errors import NoRangerAvailable
from services.location.distance import distance_km, point_of

logger = logging.getLogger(__name__)

# Forest terrain, mixed vehicle/foot travel
DEFAULT_AVERAGE_SPEED_KMH = 40.0


class RangerLike(Protocol):
    """What matching reads from a ranger (models.Ranger or a test stand-in)"""
    id: str
    lat: float
    lon: float
    status: str
    current_incident_id: Optional[str]


@dataclass(frozen=True)
class DispatchMatch:
    ranger: RangerLike
    distance_km: float
    eta_minutes: int


def compute_eta_minutes(distance: float, average_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH) -> int:
    """ceil(distance / speed * 60), in whole minutes"""
    if average_speed_kmh <= 0:
        raise ValueError(f"average_speed_kmh must be positive (got {average_speed_kmh})")
    return int(math.ceil(distance / average_speed_kmh * 60))


def is_dispatchable(ranger: RangerLike) -> bool:
    """Available and not already holding an incident"""
    return (
        _status_of(ranger) == RangerStatus.AVAILABLE
        and not getattr(ranger, "current_incident_id", None)
    )


def _status_of(ranger: RangerLike) -> Optional[RangerStatus]:
    try:
        return RangerStatus(ranger.status)
    except ValueError:
        logger.warning(f"Ranger {ranger.id} has unknown status '{ranger.status}'")
        return None


def assign_nearest_ranger(
    incident_location,
    candidates: Iterable[RangerLike],
    average_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH,
) -> DispatchMatch:
    """
    Select the closest dispatchable ranger.
    
    Ties on distance go to the lowest ranger id so the choice is reproducible.
    Raises NoRangerAvailable when no candidate is eligible.
    """
    origin = point_of(incident_location)
    
    best = None
    best_key = None
    for ranger in candidates:
        if not is_dispatchable(ranger):
            continue
        dist = distance_km(origin, ranger)
        key = (dist, str(ranger.id))
        if best_key is None or key < best_key:
            best_key = key
            best = ranger
    
    if best is None:
        raise NoRangerAvailable()
    
    dist = best_key[0]
    return DispatchMatch(
        ranger=best,
        distance_km=dist,
        eta_minutes=compute_eta_minutes(dist, average_speed_kmh),
    )


def match_specific_ranger(
    incident_location,
    ranger,
    average_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH,
) -> DispatchMatch:
    """
    Manual dispatch of a chosen ranger; same eligibility rules as the
    automatic path.
    """
    if not is_dispatchable(ranger):
        raise NoRangerAvailable(f"Ranger {ranger.id} is not available")
    dist = distance_km(incident_location, ranger)
    return DispatchMatch(
        ranger=ranger,
        distance_km=dist,
        eta_minutes=compute_eta_minutes(dist, average_speed_kmh),
    )


def render_dispatch_message(incident, match: DispatchMatch) -> str:
    """SMS sent to the ranger on assignment"""
    return (
        f"RANGER DISPATCH: {incident.threat_type.replace('_', ' ').upper()} incident assigned to you. "
        f"Severity: {incident.severity.upper()}. "
        f"Location: {incident.lat:.4f}, {incident.lon:.4f}. "
        f"Distance: {match.distance_km:.1f}km. ETA: {match.eta_minutes} min. "
        f"ID: #{incident.short_ref}"
    )
