"""
Carrier webhooks - SMS reports, SMS replies to alerts, USSD menu

Twilio posts form fields (From, Body) and reads TwiML back; Africa's
Talking USSD posts (sessionId, serviceCode, phoneNumber, text) and reads
a plain "CON ..."/"END ..." body. Carriers retry or show a generic error
on 5xx, so failures here are logged and answered in-band.
"""

import logging
from datetime import timedelta
from typing import Optional
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Form
from fastapi.responses import PlainTextResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import sms_service
from database import get_db
from enums import AlertType, IncidentSource, ResponseKind
from incident_helpers import (
    create_incident, create_ranger_alert, recent_broadcasts, record_response,
    reply_candidates, window_start,
)
from models import Incident, UssdSession
from routers.settings import get_number
from services.intake import ReportFormatError, default_severity, parse_sms_report, receipt_text
from services.location.geocoding import geocode_place
from services.responses import classify_response, confirmation_for, extract_reference, resolve_target_incident
from services.ussd import (
    ACTION_CREATE_REPORT, ACTION_LIST_REPORTS, format_report_list, format_submitted, next_screen,
)
from settings_helper import ensure_utc, utc_now

logger = logging.getLogger(__name__)
router = APIRouter()

SMS_FAILURE_REPLY = "Sorry, we could not process your message. Please try again."
USSD_FAILURE_REPLY = "END Service temporarily unavailable. Please try again."


def twiml(message: str) -> Response:
    body = f'<?xml version="1.0" encoding="UTF-8"?><Response><Message>{escape(message)}</Message></Response>'
    return Response(content=body, media_type="application/xml")


def _location_description(place: str, geo: dict, custom_threat: Optional[str] = None) -> str:
    parts = []
    if custom_threat:
        parts.append(custom_threat)
    parts.append(f"Location: {place}")
    if geo.get("needs_review"):
        parts.append("(location not recognised, default coordinates used)")
    return " ".join(parts)


# =============================================================================
# SMS REPORTS
# =============================================================================

@router.post("/sms")
def sms_report(
    From: str = Form(...),
    Body: str = Form(""),
    db: Session = Depends(get_db)
):
    """Inbound SMS report: "FIRE Kinale" creates an sms incident"""
    sender = sms_service.normalize_phone(From)
    try:
        report = parse_sms_report(Body)
    except ReportFormatError as e:
        # A bare SAFE / NEED_HELP sent to the report number is an alert reply
        if classify_response(Body).kind != ResponseKind.OTHER:
            return sms_response(From=From, Body=Body, db=db)
        return twiml(str(e))
    
    geo = geocode_place(report.place)
    try:
        incident = create_incident(
            db,
            lat=geo["latitude"],
            lon=geo["longitude"],
            threat_type=report.threat_type,
            severity=default_severity(report.threat_type),
            source=IncidentSource.SMS,
            sender_phone=sender,
            description=_location_description(report.place, geo),
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Failed to store SMS report from {sender}")
        return twiml(SMS_FAILURE_REPLY)
    
    return twiml(receipt_text(incident, report.place))


# =============================================================================
# SMS REPLIES TO ALERTS
# =============================================================================

@router.post("/sms-response")
def sms_response(
    From: str = Form(...),
    Body: str = Form(""),
    db: Session = Depends(get_db)
):
    """Record SAFE / NEED_HELP / EVACUATING replies against an incident"""
    sender = sms_service.normalize_phone(From)
    classified = classify_response(Body)
    
    since = window_start(get_number(db, "responses", "lookback_hours"))
    target = resolve_target_incident(
        sender,
        Body,
        recent_broadcasts(db, since),
        reply_candidates(db, extract_reference(Body)),
    )
    if target is None:
        logger.info(f"Reply from {sender} has no incident to attach to")
        return twiml("We could not find an active alert for your number. Thank you for your message.")
    
    try:
        record_response(
            db,
            incident_id=target.incident_id,
            phone_number=sender,
            kind=classified.kind,
            message=classified.note,
            matched_by=target.matched_by,
        )
        if classified.kind == ResponseKind.NEED_HELP:
            incident = db.get(Incident, target.incident_id)
            create_ranger_alert(
                db,
                incident,
                AlertType.HELP_REQUEST,
                title="Community Help Request",
                message=f"{sender} needs help near incident #{incident.short_ref}",
                ranger_id=incident.assigned_ranger_id,
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Failed to store reply from {sender}")
        return twiml(SMS_FAILURE_REPLY)
    
    logger.info(f"{classified.kind.value} reply from {sender} for incident {target.incident_id} ({target.matched_by})")
    return twiml(confirmation_for(classified.kind))


# =============================================================================
# USSD
# =============================================================================

def _load_session_state(db: Session, session_id: str, now) -> Optional[dict]:
    row = db.get(UssdSession, session_id)
    if row is None or ensure_utc(row.expires_at) <= now:
        return None
    return dict(row.data or {}, step=row.step)


def _save_session_state(db: Session, session_id: str, phone: Optional[str], state: dict, now):
    ttl = get_number(db, "ussd", "session_ttl_seconds")
    row = db.get(UssdSession, session_id)
    if row is None:
        row = UssdSession(session_id=session_id)
        db.add(row)
    row.phone_number = phone
    row.step = state.get("step", "main")
    row.data = dict(state)
    row.expires_at = now + timedelta(seconds=ttl)
    row.updated_at = now


def _end_session(db: Session, session_id: str):
    row = db.get(UssdSession, session_id)
    if row is not None:
        db.delete(row)


def purge_expired_sessions(db: Session, now) -> int:
    return (
        db.query(UssdSession)
        .filter(UssdSession.expires_at <= now)
        .delete(synchronize_session=False)
    )


@router.post("/ussd", response_class=PlainTextResponse)
def ussd_callback(
    sessionId: str = Form(...),
    serviceCode: str = Form(""),
    phoneNumber: str = Form(""),
    text: str = Form(""),
    db: Session = Depends(get_db)
):
    now = utc_now()
    phone = sms_service.normalize_phone(phoneNumber)
    receipt = None
    
    try:
        purge_expired_sessions(db, now)
        state = _load_session_state(db, sessionId, now)
        screen = next_screen(state, text, serviceCode)
        reply = screen.text
        
        if screen.action == ACTION_LIST_REPORTS:
            reports = (
                db.query(Incident)
                .filter(Incident.sender_phone == phone)
                .order_by(Incident.created_at.desc())
                .limit(3)
                .all()
            )
            reply = format_report_list(reports, serviceCode)
        elif screen.action == ACTION_CREATE_REPORT:
            place = screen.state.get("place")
            geo = geocode_place(place)
            incident = create_incident(
                db,
                lat=geo["latitude"],
                lon=geo["longitude"],
                threat_type=screen.state["threat_type"],
                severity=default_severity(screen.state["threat_type"]),
                source=IncidentSource.USSD,
                sender_phone=phone,
                description=_location_description(place, geo, screen.state.get("custom_threat")),
            )
            reply = format_submitted(incident, screen.state)
            receipt = receipt_text(incident, place)
        
        if screen.ends_session:
            _end_session(db, sessionId)
        else:
            _save_session_state(db, sessionId, phone, screen.state, now)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"USSD session {sessionId} failed")
        return USSD_FAILURE_REPLY
    
    if receipt and phone:
        sms_service.send_sms(phone, receipt)
    return reply
