"""
Incidents router - intake, dispatch, status and community alerts

Endpoints:
    POST /api/incidents                      - Create incident (app intake)
    GET  /api/incidents                      - List incidents
    GET  /api/incidents/{id}                 - Get incident
    POST /api/incidents/{id}/verify          - Admin verification (+ reporter SMS)
    POST /api/incidents/{id}/assign          - Dispatch nearest (or chosen) ranger
    POST /api/incidents/{id}/status          - Status transition
    POST /api/incidents/{id}/broadcast       - Alert community within a radius
    GET  /api/incidents/{id}/broadcasts      - Broadcast log
    GET  /api/incidents/{id}/responses       - Community replies
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

import sms_service
from database import get_db
from enums import IncidentSource, IncidentStatus
from incident_helpers import (
    apply_status_change, available_rangers, claim_incident_for_ranger, count_by_kind,
    create_incident, log_incident_audit, record_broadcast, subscribers_near,
)
from models import AlertBroadcast, CommunityResponse, Incident, Ranger
from routers.settings import get_number
from schemas_incidents import AssignRequest, BroadcastRequest, IncidentCreate, StatusChangeRequest
from serializers import broadcast_to_dict, incident_to_dict, response_to_dict
from services.broadcast import render_message, select_recipients, send_to_recipients, validate_radius
from services.dispatch import assign_nearest_ranger, match_specific_ranger, render_dispatch_message
from services.errors import AssignmentConflict, InvalidRadius, InvalidTransition, NoRangerAvailable
from services.intake import verification_text
from settings_helper import utc_now

logger = logging.getLogger(__name__)
router = APIRouter()


def _get_incident_or_404(db: Session, incident_id: str) -> Incident:
    incident = db.get(Incident, incident_id)
    if not incident:
        raise HTTPException(status_code=404, detail="Incident not found")
    return incident


# =============================================================================
# INTAKE
# =============================================================================

@router.post("", status_code=201)
async def create_incident_endpoint(data: IncidentCreate, db: Session = Depends(get_db)):
    """Create a reported incident"""
    incident = create_incident(
        db,
        lat=data.lat,
        lon=data.lon,
        threat_type=data.threat_type,
        severity=data.severity,
        source=data.source,
        sender_phone=sms_service.normalize_phone(data.sender_phone),
        description=data.description,
    )
    db.commit()
    db.refresh(incident)
    return incident_to_dict(incident)


@router.get("")
async def list_incidents(
    status: Optional[IncidentStatus] = None,
    source: Optional[IncidentSource] = None,
    verified: Optional[bool] = None,
    limit: int = Query(100, le=500),
    offset: int = 0,
    db: Session = Depends(get_db)
):
    """List incidents, newest first"""
    query = db.query(Incident)
    if status:
        query = query.filter(Incident.status == status.value)
    if source:
        query = query.filter(Incident.source == source.value)
    if verified is not None:
        query = query.filter(Incident.verified == verified)
    
    total = query.count()
    incidents = query.order_by(Incident.created_at.desc()).offset(offset).limit(limit).all()
    return {
        "total": total,
        "incidents": [incident_to_dict(i) for i in incidents],
    }


@router.get("/{incident_id}")
async def get_incident(incident_id: str, db: Session = Depends(get_db)):
    return incident_to_dict(_get_incident_or_404(db, incident_id))


# =============================================================================
# VERIFY
# =============================================================================

@router.post("/{incident_id}/verify")
def verify_incident(
    incident_id: str,
    actor: Optional[str] = Query(None, description="Admin performing the verification"),
    db: Session = Depends(get_db)
):
    """Mark an incident admin-confirmed and thank the reporter"""
    incident = _get_incident_or_404(db, incident_id)
    if incident.verified:
        return {"status": "ok", "id": incident_id, "already_verified": True, "sms_sent": False}
    
    incident.verified = True
    incident.updated_at = utc_now()
    log_incident_audit(
        db=db,
        action="VERIFY",
        incident=incident,
        actor=actor,
        summary="Incident verified",
        fields_changed={"verified": {"old": False, "new": True}},
    )
    db.commit()
    
    sms_sent = False
    if incident.sender_phone:
        sms_sent = sms_service.send_sms(incident.sender_phone, verification_text(incident))
    
    return {"status": "ok", "id": incident_id, "already_verified": False, "sms_sent": sms_sent}


# =============================================================================
# DISPATCH
# =============================================================================

@router.post("/{incident_id}/assign")
def assign_ranger(
    incident_id: str,
    data: Optional[AssignRequest] = None,
    db: Session = Depends(get_db)
):
    """
    Assign the nearest available ranger (or data.ranger_id) and text them.
    The assignment stands even if the SMS fails.
    """
    data = data or AssignRequest()
    incident = _get_incident_or_404(db, incident_id)
    if incident.assigned_ranger_id:
        raise HTTPException(status_code=409, detail="Incident already has a ranger assigned")
    
    speed = get_number(db, "dispatch", "average_speed_kmh")
    try:
        if data.ranger_id:
            ranger = db.get(Ranger, data.ranger_id)
            if not ranger:
                raise HTTPException(status_code=404, detail="Ranger not found")
            match = match_specific_ranger(incident, ranger, speed)
        else:
            match = assign_nearest_ranger(incident, available_rangers(db), speed)
    except NoRangerAvailable as e:
        logger.info(f"No ranger for incident {incident_id}: {e}")
        raise HTTPException(status_code=404, detail=str(e))
    
    try:
        incident = claim_incident_for_ranger(db, incident, match, actor=data.actor)
    except AssignmentConflict:
        raise HTTPException(status_code=409, detail="Incident already has a ranger assigned")
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    
    ranger = match.ranger
    sms_sent = sms_service.send_sms(ranger.phone_number, render_dispatch_message(incident, match))
    if not sms_sent:
        logger.warning(f"Dispatch SMS to ranger {ranger.id} failed for incident {incident_id}")
    
    return {
        "status": "ok",
        "message": f"Ranger {ranger.name} assigned successfully",
        "ranger": {
            "id": ranger.id,
            "name": ranger.name,
            "distance_km": round(match.distance_km, 2),
            "eta_minutes": match.eta_minutes,
        },
        "sms_sent": sms_sent,
        "incident": incident_to_dict(incident),
    }


# =============================================================================
# STATUS
# =============================================================================

@router.post("/{incident_id}/status")
async def change_status(
    incident_id: str,
    data: StatusChangeRequest,
    db: Session = Depends(get_db)
):
    incident = _get_incident_or_404(db, incident_id)
    try:
        change = apply_status_change(db, incident, data.status, actor=data.actor)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    
    db.refresh(incident)
    return {
        "status": "ok",
        "old_status": change.old_status.value,
        "new_status": change.new_status.value,
        "ranger_released": change.release_ranger,
        "incident": incident_to_dict(incident),
    }


# =============================================================================
# COMMUNITY BROADCAST
# =============================================================================

@router.post("/{incident_id}/broadcast")
def broadcast_alert(
    incident_id: str,
    data: BroadcastRequest,
    db: Session = Depends(get_db)
):
    """
    Text every subscriber within radius_km. All recipients are attempted;
    the log keeps only confirmed sends.
    """
    incident = _get_incident_or_404(db, incident_id)
    max_radius = get_number(db, "broadcast", "max_radius_km")
    try:
        radius = validate_radius(data.radius_km, max_radius)
    except InvalidRadius as e:
        raise HTTPException(status_code=400, detail=str(e))
    
    candidates = subscribers_near(db, incident, radius)
    recipients = select_recipients(incident, radius, candidates, max_radius_km=max_radius)
    rendered = render_message(
        incident,
        data.custom_message,
        soft_limit=int(get_number(db, "broadcast", "soft_message_limit")),
    )
    
    logger.info(f"Broadcasting incident {incident_id} to {len(recipients)} subscribers within {radius:g} km")
    outcome = send_to_recipients(recipients, rendered.text, sms_service.send_sms, rendered.warnings)
    
    broadcast = record_broadcast(db, incident, outcome, radius, actor=data.actor)
    db.commit()
    
    return {
        "status": "ok",
        "broadcast_id": broadcast.id,
        "message": outcome.message,
        "recipients": outcome.sent,
        "sent_count": outcome.sent_count,
        "attempted_count": outcome.attempted_count,
        "failed_count": outcome.failed_count,
        "warnings": outcome.warnings,
    }


@router.get("/{incident_id}/broadcasts")
async def list_broadcasts(incident_id: str, db: Session = Depends(get_db)):
    _get_incident_or_404(db, incident_id)
    rows = (
        db.query(AlertBroadcast)
        .filter(AlertBroadcast.incident_id == incident_id)
        .order_by(AlertBroadcast.sent_at.desc())
        .all()
    )
    return [broadcast_to_dict(b) for b in rows]


@router.get("/{incident_id}/responses")
async def list_responses(incident_id: str, db: Session = Depends(get_db)):
    _get_incident_or_404(db, incident_id)
    rows = (
        db.query(CommunityResponse)
        .filter(CommunityResponse.incident_id == incident_id)
        .order_by(CommunityResponse.responded_at.desc())
        .all()
    )
    return {
        "counts": count_by_kind(rows),
        "responses": [response_to_dict(r) for r in rows],
    }
