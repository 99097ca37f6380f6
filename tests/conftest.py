"""
ForestLink Test Configuration

Pytest fixtures and configuration for the test suite.
"""
import os
import pytest
from datetime import datetime, timezone

# Point the app at in-memory SQLite and keep geocoding offline before imports
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['GOOGLE_GEOCODING_API_KEY'] = ''

from fastapi.testclient import TestClient

import sms_service
from database import Base, SessionLocal, engine, get_db
from enums import IncidentSource, RangerStatus
from incident_helpers import create_incident
from main import app
from models import CommunitySubscriber, Ranger

# Kinale forest, Kiambu
KINALE = (-0.9667, 36.6333)


# ============================================================================
# Database / client
# ============================================================================

@pytest.fixture
def db():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    """API client sharing the test session."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class SmsOutbox:
    """Stands in for the SMS provider; records every send."""

    def __init__(self):
        self.messages = []
        self.fail_for = set()
        self.raise_for = set()

    def send(self, to, message):
        if to in self.raise_for:
            raise ConnectionError(f"provider unreachable for {to}")
        if to in self.fail_for:
            return False
        self.messages.append((to, message))
        return True

    def to(self, phone):
        return [m for p, m in self.messages if p == phone]


@pytest.fixture(autouse=True)
def sms_outbox(monkeypatch):
    """No test ever reaches a real SMS provider."""
    outbox = SmsOutbox()
    monkeypatch.setattr(sms_service, 'send_sms', outbox.send)
    return outbox


# ============================================================================
# Factories
# ============================================================================

@pytest.fixture
def make_ranger(db):
    """Create a ranger; explicit ids keep tie-breaks predictable."""
    def _make(ranger_id=None, name='Ranger', lat=KINALE[0], lon=KINALE[1],
              status=RangerStatus.AVAILABLE, phone='+254700000001', current_incident_id=None):
        ranger = Ranger(
            name=name,
            phone_number=phone,
            lat=lat,
            lon=lon,
            status=getattr(status, 'value', status),
            current_incident_id=current_incident_id,
        )
        if ranger_id is not None:
            ranger.id = ranger_id
        db.add(ranger)
        db.commit()
        return ranger
    return _make


@pytest.fixture
def make_incident(db):
    """Create a reported incident through the normal intake path."""
    def _make(lat=KINALE[0], lon=KINALE[1], threat_type='fire', severity='high',
              source=IncidentSource.APP, sender_phone=None, created_at=None, description=None):
        incident = create_incident(
            db,
            lat=lat,
            lon=lon,
            threat_type=threat_type,
            severity=severity,
            source=source,
            sender_phone=sender_phone,
            description=description,
            created_at=created_at,
        )
        db.commit()
        return incident
    return _make


@pytest.fixture
def make_subscriber(db):
    def _make(phone, lat, lon):
        sub = CommunitySubscriber(
            phone_number=phone,
            lat=lat,
            lon=lon,
            created_at=datetime.now(timezone.utc),
            updated_at=datetime.now(timezone.utc),
        )
        db.add(sub)
        db.commit()
        return sub
    return _make
