"""
Rangers router - roster, self-service status/position, alert feed
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

import sms_service
from database import get_db
from enums import RangerStatus
from models import Ranger, RangerAlert
from schemas_incidents import RangerCreate, RangerUpdate
from serializers import ranger_alert_to_dict, ranger_to_dict
from settings_helper import utc_now

logger = logging.getLogger(__name__)
router = APIRouter()

# Statuses that go with holding an incident. A holding ranger cannot leave
# them (resolving the incident releases them) and a free ranger cannot enter them.
HOLDING_STATUSES = {RangerStatus.EN_ROUTE, RangerStatus.ON_SCENE}


def _get_ranger_or_404(db: Session, ranger_id: str) -> Ranger:
    ranger = db.get(Ranger, ranger_id)
    if not ranger:
        raise HTTPException(status_code=404, detail="Ranger not found")
    return ranger


@router.get("")
async def list_rangers(
    status: Optional[RangerStatus] = None,
    db: Session = Depends(get_db)
):
    query = db.query(Ranger)
    if status:
        query = query.filter(Ranger.status == status.value)
    return [ranger_to_dict(r) for r in query.order_by(Ranger.name).all()]


@router.post("", status_code=201)
async def create_ranger(data: RangerCreate, db: Session = Depends(get_db)):
    phone = sms_service.normalize_phone(data.phone_number)
    if not phone or not data.name.strip():
        raise HTTPException(status_code=400, detail="Name and phone number are required")
    if data.status in HOLDING_STATUSES:
        raise HTTPException(status_code=400, detail=f"New rangers cannot start {data.status.value}")
    
    now = utc_now()
    ranger = Ranger(
        name=data.name.strip(),
        phone_number=phone,
        lat=data.lat,
        lon=data.lon,
        status=data.status.value,
        created_at=now,
        updated_at=now,
    )
    db.add(ranger)
    db.commit()
    db.refresh(ranger)
    logger.info(f"Ranger {ranger.id} ({ranger.name}) added")
    return ranger_to_dict(ranger)


@router.get("/{ranger_id}")
async def get_ranger(ranger_id: str, db: Session = Depends(get_db)):
    return ranger_to_dict(_get_ranger_or_404(db, ranger_id))


@router.patch("/{ranger_id}")
async def update_ranger(ranger_id: str, data: RangerUpdate, db: Session = Depends(get_db)):
    """Update position, phone or duty status"""
    ranger = _get_ranger_or_404(db, ranger_id)
    
    if data.status is not None:
        holding = bool(ranger.current_incident_id)
        if holding and data.status not in HOLDING_STATUSES:
            raise HTTPException(
                status_code=409,
                detail=f"Ranger is assigned to incident {ranger.current_incident_id}; resolve it first",
            )
        if not holding and data.status in HOLDING_STATUSES:
            raise HTTPException(
                status_code=409,
                detail=f"Ranger has no incident; {data.status.value} is set by dispatch",
            )
    
    if (data.lat is None) != (data.lon is None):
        raise HTTPException(status_code=400, detail="lat and lon must be updated together")
    
    if data.lat is not None:
        ranger.lat = data.lat
        ranger.lon = data.lon
    if data.phone_number is not None:
        phone = sms_service.normalize_phone(data.phone_number)
        if not phone:
            raise HTTPException(status_code=400, detail="Invalid phone number")
        ranger.phone_number = phone
    if data.status is not None:
        ranger.status = data.status.value
    ranger.updated_at = utc_now()
    
    db.commit()
    db.refresh(ranger)
    return ranger_to_dict(ranger)


# =============================================================================
# ALERT FEED
# =============================================================================

@router.get("/{ranger_id}/alerts")
async def list_alerts(
    ranger_id: str,
    unread_only: bool = False,
    limit: int = Query(50, le=200),
    db: Session = Depends(get_db)
):
    """Alerts addressed to this ranger plus those for all rangers, newest first"""
    _get_ranger_or_404(db, ranger_id)
    query = db.query(RangerAlert).filter(
        or_(RangerAlert.ranger_id == ranger_id, RangerAlert.ranger_id.is_(None))
    )
    if unread_only:
        query = query.filter(RangerAlert.read == False)
    alerts = query.order_by(RangerAlert.created_at.desc(), RangerAlert.id.desc()).limit(limit).all()
    return [ranger_alert_to_dict(a) for a in alerts]


@router.post("/alerts/{alert_id}/read")
async def mark_alert_read(alert_id: int, db: Session = Depends(get_db)):
    alert = db.get(RangerAlert, alert_id)
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    alert.read = True
    db.commit()
    return {"status": "ok", "id": alert_id}
