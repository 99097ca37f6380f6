"""
Incident Pydantic Schemas
Request bodies for the incident, ranger and subscriber routers.

Enum fields use the closed value sets from enums.py, so an unknown
threat type or status is a 422 before any handler runs.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from enums import IncidentSource, IncidentStatus, RangerStatus, Severity, ThreatType


# =============================================================================
# INCIDENTS
# =============================================================================

class IncidentCreate(BaseModel):
    """Create new incident (app intake)"""
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    threat_type: ThreatType
    severity: Severity = Severity.MEDIUM
    source: IncidentSource = IncidentSource.APP
    sender_phone: Optional[str] = None
    description: Optional[str] = None


class StatusChangeRequest(BaseModel):
    status: IncidentStatus
    actor: Optional[str] = None


class AssignRequest(BaseModel):
    """Omit ranger_id for nearest-available auto assignment"""
    ranger_id: Optional[str] = None
    actor: Optional[str] = None


class BroadcastRequest(BaseModel):
    radius_km: float
    custom_message: Optional[str] = None
    actor: Optional[str] = None


# =============================================================================
# RANGERS
# =============================================================================

class RangerCreate(BaseModel):
    name: str
    phone_number: str
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    status: RangerStatus = RangerStatus.AVAILABLE


class RangerUpdate(BaseModel):
    """Ranger self-service: position and duty status"""
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lon: Optional[float] = Field(None, ge=-180, le=180)
    status: Optional[RangerStatus] = None
    phone_number: Optional[str] = None


# =============================================================================
# SUBSCRIBERS
# =============================================================================

class SubscriberUpsert(BaseModel):
    phone_number: str
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


# =============================================================================
# SATELLITE
# =============================================================================

class DetectionIn(BaseModel):
    """One FIRMS detection posted as JSON"""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    confidence: float
    frp: float = 0.0
    brightness: float = 0.0
    acquired_at: Optional[datetime] = None
    satellite: Optional[str] = None


class DetectionBatch(BaseModel):
    detections: List[DetectionIn]
