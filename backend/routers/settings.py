"""
Settings router - Runtime configuration from database

Dispatch and alerting tunables live here so they can change without a
redeploy. Missing rows fall back to DEFAULT_SETTINGS.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from models import Setting
from services.broadcast import DEFAULT_MAX_RADIUS_KM, SOFT_MESSAGE_LIMIT
from services.dispatch import DEFAULT_AVERAGE_SPEED_KMH
from services.hotspots import DEFAULT_MIN_CONFIDENCE, DEFAULT_TOLERANCE_DEG, DEFAULT_WINDOW_HOURS
from services.ussd import DEFAULT_SESSION_TTL_SECONDS
from settings_helper import format_utc_iso, parse_setting_value, utc_now

router = APIRouter()

# category -> key -> (default, value_type, description)
DEFAULT_SETTINGS = {
    "dispatch": {
        "average_speed_kmh": (DEFAULT_AVERAGE_SPEED_KMH, "number", "Assumed ranger travel speed for ETA"),
    },
    "broadcast": {
        "max_radius_km": (DEFAULT_MAX_RADIUS_KM, "number", "Largest allowed community alert radius"),
        "soft_message_limit": (SOFT_MESSAGE_LIMIT, "number", "Custom messages longer than this get a warning"),
    },
    "satellite": {
        "tolerance_deg": (DEFAULT_TOLERANCE_DEG, "number", "Duplicate box half-width in degrees"),
        "window_hours": (DEFAULT_WINDOW_HOURS, "number", "How far back satellite incidents suppress duplicates"),
        "min_confidence": (DEFAULT_MIN_CONFIDENCE, "number", "Minimum detection confidence"),
    },
    "ussd": {
        "session_ttl_seconds": (DEFAULT_SESSION_TTL_SECONDS, "number", "USSD menu session lifetime"),
    },
    "responses": {
        "lookback_hours": (72, "number", "Broadcasts considered when matching replies"),
    },
}


class SettingUpdate(BaseModel):
    value: str


class SettingCreate(BaseModel):
    category: str
    key: str
    value: str
    value_type: str = 'string'
    description: Optional[str] = None


# =============================================================================
# HELPERS (used by other routers)
# =============================================================================

def get_setting_value(db: Session, category: str, key: str, default: Any = None) -> Any:
    """Get a setting value with type conversion"""
    row = db.query(Setting).filter(Setting.category == category, Setting.key == key).first()
    if row is None:
        known = DEFAULT_SETTINGS.get(category, {}).get(key)
        if default is None and known is not None:
            return known[0]
        return default
    return parse_setting_value(row.value, row.value_type)


def get_number(db: Session, category: str, key: str) -> float:
    """Numeric tunable; a non-numeric stored value falls back to the default"""
    default = DEFAULT_SETTINGS[category][key][0]
    value = get_setting_value(db, category, key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def _setting_to_dict(row: Setting) -> dict:
    return {
        "id": row.id,
        "category": row.category,
        "key": row.key,
        "value": parse_setting_value(row.value, row.value_type),
        "raw_value": row.value,
        "value_type": row.value_type,
        "description": row.description,
        "updated_at": format_utc_iso(row.updated_at),
    }


# =============================================================================
# SETTINGS CRUD
# =============================================================================

@router.get("")
async def list_all_settings(db: Session = Depends(get_db)):
    """Get all settings grouped by category, defaults filled in"""
    settings = {}
    for category, keys in DEFAULT_SETTINGS.items():
        for key, (default, value_type, description) in keys.items():
            settings.setdefault(category, {})[key] = {
                "category": category,
                "key": key,
                "value": default,
                "value_type": value_type,
                "description": description,
                "is_default": True,
            }
    
    for row in db.query(Setting).order_by(Setting.category, Setting.key).all():
        entry = _setting_to_dict(row)
        entry["is_default"] = False
        settings.setdefault(row.category, {})[row.key] = entry
    
    return settings


@router.get("/{category}/{key}")
async def get_setting(category: str, key: str, db: Session = Depends(get_db)):
    row = db.query(Setting).filter(Setting.category == category, Setting.key == key).first()
    if row is None:
        known = DEFAULT_SETTINGS.get(category, {}).get(key)
        if known is None:
            raise HTTPException(status_code=404, detail="Setting not found")
        return {"category": category, "key": key, "value": known[0], "value_type": known[1], "is_default": True}
    return _setting_to_dict(row)


@router.put("/{category}/{key}")
async def update_setting(
    category: str,
    key: str,
    data: SettingUpdate,
    db: Session = Depends(get_db)
):
    """Update a setting value (creates if not exists)"""
    row = db.query(Setting).filter(Setting.category == category, Setting.key == key).first()
    
    if row is None:
        known = DEFAULT_SETTINGS.get(category, {}).get(key)
        row = Setting(
            category=category,
            key=key,
            value_type=known[1] if known else 'string',
            description=known[2] if known else None,
        )
        db.add(row)
    
    row.value = data.value
    row.updated_at = utc_now()
    db.commit()
    return {"status": "ok", "id": row.id}


@router.post("")
async def create_setting(data: SettingCreate, db: Session = Depends(get_db)):
    existing = db.query(Setting).filter(Setting.category == data.category, Setting.key == data.key).first()
    if existing:
        raise HTTPException(status_code=400, detail="Setting already exists")
    
    row = Setting(
        category=data.category,
        key=data.key,
        value=data.value,
        value_type=data.value_type,
        description=data.description,
        updated_at=utc_now(),
    )
    db.add(row)
    db.commit()
    return {"status": "ok", "id": row.id}


@router.delete("/{category}/{key}")
async def delete_setting(category: str, key: str, db: Session = Depends(get_db)):
    """Delete a setting (reverts to its default, if any)"""
    row = db.query(Setting).filter(Setting.category == category, Setting.key == key).first()
    if row is None:
        raise HTTPException(status_code=404, detail="Setting not found")
    db.delete(row)
    db.commit()
    return {"status": "ok"}
