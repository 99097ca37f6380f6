"""
Community subscribers router - who receives broadcast alerts
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import sms_service
from database import get_db
from models import CommunitySubscriber
from schemas_incidents import SubscriberUpsert
from settings_helper import iso_or_none, utc_now

logger = logging.getLogger(__name__)
router = APIRouter()


def _subscriber_to_dict(s: CommunitySubscriber) -> dict:
    return {
        "id": s.id,
        "phone_number": s.phone_number,
        "lat": s.lat,
        "lon": s.lon,
        "created_at": iso_or_none(s, 'created_at'),
        "updated_at": iso_or_none(s, 'updated_at'),
    }


@router.get("")
async def list_subscribers(db: Session = Depends(get_db)):
    subs = db.query(CommunitySubscriber).order_by(CommunitySubscriber.id).all()
    return [_subscriber_to_dict(s) for s in subs]


@router.post("")
async def upsert_subscriber(data: SubscriberUpsert, db: Session = Depends(get_db)):
    """Subscribe a phone, or move an existing subscription to a new location"""
    phone = sms_service.normalize_phone(data.phone_number)
    if not phone:
        raise HTTPException(status_code=400, detail="Invalid phone number")
    
    now = utc_now()
    sub = db.query(CommunitySubscriber).filter(CommunitySubscriber.phone_number == phone).first()
    created = sub is None
    if created:
        sub = CommunitySubscriber(phone_number=phone, created_at=now)
        db.add(sub)
    sub.lat = data.lat
    sub.lon = data.lon
    sub.updated_at = now
    
    db.commit()
    db.refresh(sub)
    logger.info(f"Subscriber {phone} {'added' if created else 'updated'}")
    return {"status": "ok", "created": created, "subscriber": _subscriber_to_dict(sub)}


@router.delete("/{phone}")
async def delete_subscriber(phone: str, db: Session = Depends(get_db)):
    normalized = sms_service.normalize_phone(phone)
    sub = db.query(CommunitySubscriber).filter(CommunitySubscriber.phone_number == normalized).first()
    if not sub:
        raise HTTPException(status_code=404, detail="Subscriber not found")
    db.delete(sub)
    db.commit()
    return {"status": "ok", "phone_number": normalized}
