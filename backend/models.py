"""
SQLAlchemy models for ForestLink

Incidents, rangers and the community alerting tables.
Enum-valued columns store the string values defined in enums.py.
"""

import uuid

from sqlalchemy import Column, Integer, String, Boolean, Text, Float, ForeignKey, JSON, TIMESTAMP, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# INCIDENTS
# =============================================================================

class Incident(Base):
    """
    Reported or detected forest threat.

    assigned_ranger_id is only set while status is assigned, en_route,
    on_scene or resolved; eta_minutes travels with it.
    """
    __tablename__ = "incidents"
    
    id = Column(String(36), primary_key=True, default=_new_id)
    
    # Location (WGS84 decimal degrees)
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)
    
    threat_type = Column(String(30), nullable=False)           # fire, deforestation, poaching...
    severity = Column(String(10), nullable=False, default='medium')
    source = Column(String(10), nullable=False, default='app')  # app, sms, ussd, satellite
    description = Column(Text)
    sender_phone = Column(String(20), index=True)              # sms/ussd reporters
    
    verified = Column(Boolean, nullable=False, default=False)  # Admin-confirmed
    status = Column(String(20), nullable=False, default='reported', index=True)
    
    # Dispatch
    assigned_ranger_id = Column(String(36), ForeignKey("rangers.id", ondelete="SET NULL"))
    eta_minutes = Column(Integer)
    
    # Lifecycle times (UTC)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=func.current_timestamp())
    ingested_at = Column(TIMESTAMP(timezone=True), nullable=False, default=func.current_timestamp())  # When we stored it; satellite rows backdate created_at
    assigned_at = Column(TIMESTAMP(timezone=True))
    responded_at = Column(TIMESTAMP(timezone=True))   # First en_route / on_scene
    resolved_at = Column(TIMESTAMP(timezone=True))
    updated_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())
    
    # Optimistic concurrency: every UPDATE is conditioned on the version read
    version = Column(Integer, nullable=False, default=1)
    
    assigned_ranger = relationship("Ranger", foreign_keys=[assigned_ranger_id])
    
    __table_args__ = (
        Index("ix_incidents_source_created", "source", "created_at"),
        Index("ix_incidents_source_ingested", "source", "ingested_at"),
    )
    __mapper_args__ = {"version_id_col": version}
    
    @property
    def short_ref(self) -> str:
        """First 8 characters of the id, uppercased (used in SMS)"""
        return (self.id or "")[:8].upper()


# =============================================================================
# RANGERS
# =============================================================================

class Ranger(Base):
    """
    Field responder.

    current_incident_id is only set while status is en_route or on_scene.
    """
    __tablename__ = "rangers"
    
    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), nullable=False)
    phone_number = Column(String(20), nullable=False)
    
    # Last known position
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)
    
    status = Column(String(20), nullable=False, default='available', index=True)
    current_incident_id = Column(String(36), index=True)   # incidents.id
    
    created_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())
    updated_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())


class RangerAlert(Base):
    """In-app notification for rangers (unaddressed when ranger_id is null)"""
    __tablename__ = "ranger_alerts"
    
    id = Column(Integer, primary_key=True)
    ranger_id = Column(String(36), ForeignKey("rangers.id", ondelete="CASCADE"), index=True)
    incident_id = Column(String(36), ForeignKey("incidents.id", ondelete="CASCADE"), index=True)
    alert_type = Column(String(30), nullable=False)   # new_incident, high_severity, dispatch...
    title = Column(String(200), nullable=False)
    message = Column(Text)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())


# =============================================================================
# COMMUNITY ALERTING
# =============================================================================

class CommunitySubscriber(Base):
    """Community member who receives broadcast alerts"""
    __tablename__ = "community_subscribers"
    
    id = Column(Integer, primary_key=True)
    phone_number = Column(String(20), unique=True, nullable=False)
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())
    updated_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())


class AlertBroadcast(Base):
    """
    Log of one broadcast send. Immutable once written.
    recipients holds only numbers whose send was confirmed.
    """
    __tablename__ = "alert_broadcasts"
    
    id = Column(Integer, primary_key=True)
    incident_id = Column(String(36), ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    recipients = Column(JSON, nullable=False, default=list)
    radius_km = Column(Float, nullable=False)
    attempted_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    sent_at = Column(TIMESTAMP(timezone=True), nullable=False, default=func.current_timestamp(), index=True)


class CommunityResponse(Base):
    """Inbound SMS/USSD reply to an alert. Never mutated."""
    __tablename__ = "community_responses"
    
    id = Column(Integer, primary_key=True)
    incident_id = Column(String(36), ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, index=True)
    phone_number = Column(String(20), nullable=False)
    response = Column(String(20), nullable=False)     # SAFE, NEED_HELP, EVACUATING, OTHER
    message = Column(Text)
    matched_by = Column(String(20))                   # broadcast, reference, latest_incident
    responded_at = Column(TIMESTAMP(timezone=True), nullable=False, default=func.current_timestamp())


# =============================================================================
# USSD SESSIONS
# =============================================================================

class UssdSession(Base):
    """
    Menu state for an in-progress USSD dialogue.
    Keyed by the carrier session id; rows past expires_at are stale.
    """
    __tablename__ = "ussd_sessions"
    
    session_id = Column(String(100), primary_key=True)
    phone_number = Column(String(20))
    step = Column(String(30), nullable=False, default='main')
    data = Column(JSON, nullable=False, default=dict)
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    updated_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())


# =============================================================================
# SETTINGS
# =============================================================================

class Setting(Base):
    """Runtime configuration stored in database"""
    __tablename__ = "settings"
    
    id = Column(Integer, primary_key=True)
    category = Column(String(50), nullable=False)
    key = Column(String(50), nullable=False)
    value = Column(Text)
    value_type = Column(String(20), default='string')  # string, number, boolean, json
    description = Column(Text)
    updated_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())


# =============================================================================
# AUDIT LOG
# =============================================================================

class AuditLog(Base):
    """Audit trail for incident and ranger changes"""
    __tablename__ = "audit_log"
    
    id = Column(Integer, primary_key=True)
    
    # Who
    actor = Column(String(100))                   # admin user, ranger id, "sms", "satellite"
    
    # What
    action = Column(String(50), nullable=False)   # CREATE, ASSIGN, STATUS, VERIFY, BROADCAST
    entity_type = Column(String(50))              # incident, ranger
    entity_id = Column(String(36))
    entity_display = Column(String(255))          # "Incident #AB12CD34"
    
    # Details
    summary = Column(Text)
    fields_changed = Column(JSON)
    
    created_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())
