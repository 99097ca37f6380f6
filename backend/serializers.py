"""
Response builders - ORM rows to API dicts.
All datetimes go out through format_utc_iso.
"""

from models import AlertBroadcast, CommunityResponse, Incident, Ranger, RangerAlert
from settings_helper import iso_or_none


def incident_to_dict(i: Incident) -> dict:
    return {
        "id": i.id,
        "short_ref": i.short_ref,
        "lat": i.lat,
        "lon": i.lon,
        "threat_type": i.threat_type,
        "severity": i.severity,
        "source": i.source,
        "description": i.description,
        "sender_phone": i.sender_phone,
        "verified": bool(i.verified),
        "status": i.status,
        "assigned_ranger_id": i.assigned_ranger_id,
        "eta_minutes": i.eta_minutes,
        "created_at": iso_or_none(i, 'created_at'),
        "ingested_at": iso_or_none(i, 'ingested_at'),
        "assigned_at": iso_or_none(i, 'assigned_at'),
        "responded_at": iso_or_none(i, 'responded_at'),
        "resolved_at": iso_or_none(i, 'resolved_at'),
    }


def ranger_to_dict(r: Ranger) -> dict:
    return {
        "id": r.id,
        "name": r.name,
        "phone_number": r.phone_number,
        "lat": r.lat,
        "lon": r.lon,
        "status": r.status,
        "current_incident_id": r.current_incident_id,
        "updated_at": iso_or_none(r, 'updated_at'),
    }


def ranger_alert_to_dict(a: RangerAlert) -> dict:
    return {
        "id": a.id,
        "ranger_id": a.ranger_id,
        "incident_id": a.incident_id,
        "alert_type": a.alert_type,
        "title": a.title,
        "message": a.message,
        "read": bool(a.read),
        "created_at": iso_or_none(a, 'created_at'),
    }


def broadcast_to_dict(b: AlertBroadcast) -> dict:
    return {
        "id": b.id,
        "incident_id": b.incident_id,
        "message": b.message,
        "recipients": list(b.recipients or []),
        "radius_km": b.radius_km,
        "attempted_count": b.attempted_count,
        "failed_count": b.failed_count,
        "sent_at": iso_or_none(b, 'sent_at'),
    }


def response_to_dict(r: CommunityResponse) -> dict:
    return {
        "id": r.id,
        "incident_id": r.incident_id,
        "phone_number": r.phone_number,
        "response": r.response,
        "message": r.message,
        "matched_by": r.matched_by,
        "responded_at": iso_or_none(r, 'responded_at'),
    }
