"""
Satellite router - NASA FIRMS hotspot ingestion

    POST /api/satellite/fetch   - download the FIRMS country CSV and ingest it
    POST /api/satellite/ingest  - ingest detections posted as JSON
"""

import logging
from typing import List

import requests
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from database import get_db
from enums import IncidentSource, ThreatType
from incident_helpers import create_incident, recent_incidents, window_start
from routers.settings import get_number
from schemas_incidents import DetectionBatch
from services.hotspots import GeoDetection, describe_detection, fetch_firms_csv, filter_new_hotspots, parse_firms_csv

logger = logging.getLogger(__name__)
router = APIRouter()


def ingest_detections(db: Session, detections: List[GeoDetection]) -> dict:
    """Turn new, confident, non-duplicate detections into fire incidents"""
    window_hours = get_number(db, "satellite", "window_hours")
    recent = recent_incidents(db, source=IncidentSource.SATELLITE, ingested_since=window_start(window_hours))
    
    survivors = filter_new_hotspots(
        detections,
        recent,
        tolerance_deg=get_number(db, "satellite", "tolerance_deg"),
        window_hours=window_hours,
        min_confidence=get_number(db, "satellite", "min_confidence"),
        dedupe_within_batch=True,
    )
    
    created = []
    for det in survivors:
        incident = create_incident(
            db,
            lat=det.lat,
            lon=det.lon,
            threat_type=ThreatType.FIRE,
            severity=det.severity,
            source=IncidentSource.SATELLITE,
            actor="firms",
            description=describe_detection(det),
            created_at=det.acquired_at,
        )
        created.append(incident.id)
    db.commit()
    
    logger.info(f"Satellite ingest: {len(detections)} detections, {len(created)} new incidents")
    return {
        "status": "ok",
        "received": len(detections),
        "created": len(created),
        "skipped": len(detections) - len(created),
        "incident_ids": created,
    }


@router.post("/fetch")
def fetch_hotspots(
    days: int = Query(1, ge=1, le=10),
    db: Session = Depends(get_db)
):
    try:
        csv_text = fetch_firms_csv(days=days)
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except requests.RequestException as e:
        logger.error(f"FIRMS download failed: {e}")
        raise HTTPException(status_code=502, detail="FIRMS download failed")
    
    return ingest_detections(db, parse_firms_csv(csv_text))


@router.post("/ingest")
def ingest_hotspots(data: DetectionBatch, db: Session = Depends(get_db)):
    detections = [
        GeoDetection(
            lat=d.latitude,
            lon=d.longitude,
            confidence=d.confidence,
            frp=d.frp,
            brightness=d.brightness,
            acquired_at=d.acquired_at,
            satellite=d.satellite,
        )
        for d in data.detections
    ]
    return ingest_detections(db, detections)
