"""
Settings Helper - settings parsing and UTC time helpers
Shared by routers and the webhook handlers.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


def parse_setting_value(value: Optional[str], value_type: Optional[str]) -> Any:
    """Parse string value to appropriate type"""
    if value is None:
        return None
    
    if value_type == 'number':
        try:
            if '.' in value:
                return float(value)
            return int(value)
        except ValueError:
            return value
    elif value_type == 'boolean':
        return value.lower() in ('true', '1', 'yes')
    elif value_type == 'json':
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


# =============================================================================
# UTC HELPERS - USE THESE EVERYWHERE FOR DATETIME HANDLING
# =============================================================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.
    
    Some backends (SQLite) hand back naive values for TIMESTAMP WITH TIME ZONE
    columns; everything stored here is UTC, so naive means UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_utc_iso(dt) -> Optional[str]:
    """
    Format datetime as ISO 8601 with explicit Z suffix for UTC.
    
    This MUST be used for ALL datetime output to JSON/API responses.
    
    Without Z: "2025-12-28T23:52:36" - JS treats as LOCAL time (WRONG!)
    With Z:    "2025-12-28T23:52:36Z" - JS treats as UTC (CORRECT!)
    """
    if dt is None:
        return None
    if isinstance(dt, datetime):
        return ensure_utc(dt).strftime('%Y-%m-%dT%H:%M:%S.%fZ')
    return str(dt)


def iso_or_none(obj, attr: str) -> Optional[str]:
    """
    Get attribute from object and format as UTC ISO string.
    
    Usage in API responses:
        "assigned_at": iso_or_none(incident, 'assigned_at'),
    """
    val = getattr(obj, attr, None)
    return format_utc_iso(val)
