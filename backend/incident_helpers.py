"""
Incident Helper Functions
Persistence side of dispatch and alerting.

Contains:
- Audit logging
- Ranger alerts
- Incident creation (all intake channels)
- Atomic ranger assignment
- Status transition persistence (incident + ranger written together)
- Broadcast and community response records
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from enums import AlertType, IncidentSource, IncidentStatus, RangerStatus, Severity, ThreatType
from models import (
    AlertBroadcast, AuditLog, CommunityResponse, CommunitySubscriber,
    Incident, Ranger, RangerAlert,
)
from services.broadcast import BroadcastOutcome
from services.dispatch import DispatchMatch, render_dispatch_message
from services.errors import AssignmentConflict, InvalidTransition
from services.incident_status import StatusChange, can_transition, transition
from services.intake import alert_type_for, new_incident_alert_text
from services.location.distance import bounding_box, validate_point
from settings_helper import ensure_utc, utc_now

logger = logging.getLogger(__name__)


# =============================================================================
# AUDIT LOGGING HELPER
# =============================================================================

def log_incident_audit(
    db: Session,
    action: str,
    incident: Incident,
    actor: Optional[str],
    summary: str,
    fields_changed: Optional[dict] = None
):
    """Log an incident change to the audit trail."""
    log_entry = AuditLog(
        actor=actor,
        action=action,
        entity_type="incident",
        entity_id=incident.id,
        entity_display=f"Incident #{incident.short_ref}",
        summary=summary,
        fields_changed=fields_changed,
    )
    db.add(log_entry)


def _jsonable(value):
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    return value


# =============================================================================
# RANGER ALERTS
# =============================================================================

def create_ranger_alert(
    db: Session,
    incident: Incident,
    alert_type: AlertType,
    title: str,
    message: Optional[str] = None,
    ranger_id: Optional[str] = None,
) -> RangerAlert:
    alert = RangerAlert(
        ranger_id=ranger_id,
        incident_id=incident.id,
        alert_type=alert_type.value,
        title=title,
        message=message,
        read=False,
        created_at=utc_now(),
    )
    db.add(alert)
    return alert


# =============================================================================
# INCIDENT CREATION
# =============================================================================

def create_incident(
    db: Session,
    lat: float,
    lon: float,
    threat_type,
    severity,
    source,
    actor: Optional[str] = None,
    sender_phone: Optional[str] = None,
    description: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Incident:
    """
    Add a new reported incident and raise the new-incident ranger alert.
    Caller commits.
    """
    point = validate_point(lat, lon)
    threat_type = ThreatType(threat_type)
    severity = Severity(severity)
    source = IncidentSource(source)
    now = utc_now()
    
    incident = Incident(
        lat=point.lat,
        lon=point.lon,
        threat_type=threat_type.value,
        severity=severity.value,
        source=source.value,
        sender_phone=sender_phone,
        description=description,
        verified=False,
        status=IncidentStatus.REPORTED.value,
        created_at=ensure_utc(created_at) or now,
        ingested_at=now,
        updated_at=now,
    )
    db.add(incident)
    db.flush()  # assigns id
    
    log_incident_audit(
        db=db,
        action="CREATE",
        incident=incident,
        actor=actor or source.value,
        summary=f"{threat_type.label} reported via {source.value} ({severity.value})",
    )
    title, message = new_incident_alert_text(incident)
    create_ranger_alert(db, incident, alert_type_for(incident), title, message)
    
    logger.info(f"Created {source.value} incident {incident.id} ({threat_type.value}, {severity.value})")
    return incident


# =============================================================================
# ASSIGNMENT (single conditional write)
# =============================================================================

def available_rangers(db: Session) -> List[Ranger]:
    return (
        db.query(Ranger)
        .filter(Ranger.status == RangerStatus.AVAILABLE.value, Ranger.current_incident_id.is_(None))
        .order_by(Ranger.id)
        .all()
    )


def claim_incident_for_ranger(
    db: Session,
    incident: Incident,
    match: DispatchMatch,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Incident:
    """
    Write an assignment atomically.
    
    The incident UPDATE only matches while assigned_ranger_id is NULL and the
    incident is still reported; the ranger UPDATE only matches while the
    ranger is available with no current incident. Either missing its row
    rolls the whole thing back with AssignmentConflict, so an incident never
    ends up with two rangers and the incident/ranger link is never half
    written.
    """
    if not can_transition(incident.status, IncidentStatus.ASSIGNED):
        raise InvalidTransition(incident.status, IncidentStatus.ASSIGNED)
    
    ranger = match.ranger
    incident_id = incident.id
    now = ensure_utc(now) or utc_now()
    created = ensure_utc(incident.created_at)
    assigned_at = max(now, created) if created else now
    
    updated = (
        db.query(Incident)
        .filter(
            Incident.id == incident_id,
            Incident.assigned_ranger_id.is_(None),
            Incident.status == IncidentStatus.REPORTED.value,
        )
        .update(
            {
                Incident.assigned_ranger_id: ranger.id,
                Incident.status: IncidentStatus.ASSIGNED.value,
                Incident.assigned_at: assigned_at,
                Incident.eta_minutes: match.eta_minutes,
                Incident.updated_at: now,
                Incident.version: Incident.version + 1,
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.rollback()
        logger.info(f"Incident {incident_id} already assigned; discarding match to ranger {ranger.id}")
        raise AssignmentConflict(incident_id)
    
    claimed = (
        db.query(Ranger)
        .filter(
            Ranger.id == ranger.id,
            Ranger.status == RangerStatus.AVAILABLE.value,
            Ranger.current_incident_id.is_(None),
        )
        .update(
            {
                Ranger.status: RangerStatus.EN_ROUTE.value,
                Ranger.current_incident_id: incident_id,
                Ranger.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    if claimed != 1:
        db.rollback()
        logger.info(f"Ranger {ranger.id} was taken before incident {incident_id} could claim them")
        raise AssignmentConflict(incident_id, ranger.id)
    
    db.expire(incident)
    log_incident_audit(
        db=db,
        action="ASSIGN",
        incident=incident,
        actor=actor,
        summary=f"Ranger {ranger.name} assigned ({match.distance_km:.2f} km, ETA {match.eta_minutes} min)",
        fields_changed={
            "assigned_ranger_id": {"old": None, "new": ranger.id},
            "status": {"old": IncidentStatus.REPORTED.value, "new": IncidentStatus.ASSIGNED.value},
            "eta_minutes": {"old": None, "new": match.eta_minutes},
        },
    )
    create_ranger_alert(
        db,
        incident,
        AlertType.DISPATCH,
        title=f"Dispatched: {ThreatType(incident.threat_type).label}",
        message=render_dispatch_message(incident, match),
        ranger_id=ranger.id,
    )
    db.commit()
    db.refresh(incident)
    logger.info(f"Ranger {ranger.id} assigned to incident {incident_id}, ETA {match.eta_minutes} min")
    return incident


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================

def apply_status_change(
    db: Session,
    incident: Incident,
    target,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> StatusChange:
    """
    Run the state machine and persist incident + ranger together.
    
    A concurrent change to the same incident (version mismatch) rolls back
    and surfaces as InvalidTransition.
    """
    change = transition(incident, target, now=now)
    
    if change.ranger_id:
        ranger = db.get(Ranger, change.ranger_id)
        if ranger is not None:
            if change.release_ranger:
                if ranger.current_incident_id == incident.id:
                    ranger.current_incident_id = None
                    ranger.status = RangerStatus.AVAILABLE.value
                    ranger.updated_at = utc_now()
            elif change.ranger_status is not None:
                ranger.status = change.ranger_status.value
                ranger.current_incident_id = incident.id
                ranger.updated_at = utc_now()
    
    incident.updated_at = utc_now()
    log_incident_audit(
        db=db,
        action="STATUS",
        incident=incident,
        actor=actor,
        summary=f"Status changed: {change.old_status.value} → {change.new_status.value}",
        fields_changed={
            key: {"new": _jsonable(value)} for key, value in change.changes.items()
        },
    )
    
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise InvalidTransition(change.old_status, change.new_status, reason="incident changed concurrently")
    
    return change


# =============================================================================
# BROADCASTS
# =============================================================================

def subscribers_near(db: Session, center, radius_km: float) -> List[CommunitySubscriber]:
    """Bounding-box pre-filter; exact radius test happens in the selector."""
    min_lat, max_lat, min_lon, max_lon = bounding_box(center, radius_km)
    return (
        db.query(CommunitySubscriber)
        .filter(
            CommunitySubscriber.lat >= min_lat,
            CommunitySubscriber.lat <= max_lat,
            CommunitySubscriber.lon >= min_lon,
            CommunitySubscriber.lon <= max_lon,
        )
        .order_by(CommunitySubscriber.id)
        .all()
    )


def record_broadcast(
    db: Session,
    incident: Incident,
    outcome: BroadcastOutcome,
    radius_km: float,
    actor: Optional[str] = None,
) -> AlertBroadcast:
    """Persist the broadcast log with confirmed recipients only. Caller commits."""
    broadcast = AlertBroadcast(
        incident_id=incident.id,
        message=outcome.message,
        recipients=list(outcome.sent),
        radius_km=radius_km,
        attempted_count=outcome.attempted_count,
        failed_count=outcome.failed_count,
        sent_at=utc_now(),
    )
    db.add(broadcast)
    log_incident_audit(
        db=db,
        action="BROADCAST",
        incident=incident,
        actor=actor,
        summary=f"Alert sent to {outcome.sent_count}/{outcome.attempted_count} subscribers within {radius_km:g} km",
    )
    return broadcast


def recent_broadcasts(db: Session, since: datetime) -> List[AlertBroadcast]:
    return (
        db.query(AlertBroadcast)
        .filter(AlertBroadcast.sent_at >= since)
        .order_by(AlertBroadcast.sent_at.desc())
        .all()
    )


def recent_incidents(
    db: Session,
    since: Optional[datetime] = None,
    source=None,
    ingested_since: Optional[datetime] = None,
) -> List[Incident]:
    """
    since filters on created_at (when the threat was seen), ingested_since on
    ingested_at (when the row was stored).
    """
    query = db.query(Incident)
    if since is not None:
        query = query.filter(Incident.created_at >= since)
    if ingested_since is not None:
        query = query.filter(Incident.ingested_at >= ingested_since)
    if source is not None:
        query = query.filter(Incident.source == IncidentSource(source).value)
    return query.order_by(Incident.created_at.desc()).all()


def reply_candidates(db: Session, short_id: Optional[str] = None) -> List[Incident]:
    """
    The few incidents an unattributed reply can belong to: the newest one
    whose id starts with short_id, plus the newest incident overall.
    """
    candidates = []
    if short_id:
        match = (
            db.query(Incident)
            .filter(Incident.id.like(f"{short_id.lower()}%"))
            .order_by(Incident.created_at.desc())
            .first()
        )
        if match:
            candidates.append(match)
    latest = db.query(Incident).order_by(Incident.created_at.desc()).first()
    if latest and latest not in candidates:
        candidates.append(latest)
    return candidates


def window_start(hours: float, now: Optional[datetime] = None) -> datetime:
    return (ensure_utc(now) or utc_now()) - timedelta(hours=hours)


# =============================================================================
# COMMUNITY RESPONSES
# =============================================================================

def record_response(
    db: Session,
    incident_id: str,
    phone_number: str,
    kind,
    message: Optional[str],
    matched_by: Optional[str] = None,
) -> CommunityResponse:
    response = CommunityResponse(
        incident_id=incident_id,
        phone_number=phone_number,
        response=kind.value,
        message=message,
        matched_by=matched_by,
        responded_at=utc_now(),
    )
    db.add(response)
    return response


def count_by_kind(responses: Iterable[CommunityResponse]) -> dict:
    counts = {}
    for r in responses:
        counts[r.response] = counts.get(r.response, 0) + 1
    return counts
