"""
Satellite Hotspot Deduplicator

Screens NASA FIRMS thermal detections before they become incidents:
drops low-confidence detections and ones that sit on top of an incident
already recorded from the satellite feed, then grades survivors.

The duplicate test is an axis-aligned box in degrees (|dlat| and |dlon|
both under the tolerance), not haversine distance, so its east-west
extent in km shrinks as latitude grows.

Also parses the FIRMS country CSV and fetches it over HTTP.
"""

import csv
import io
import logging
import os
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import requests

from enums import Severity

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_DEG = 0.01     # ~1.1 km north-south
DEFAULT_WINDOW_HOURS = 24
DEFAULT_MIN_CONFIDENCE = 80

CRITICAL_FRP = 300.0
HIGH_FRP = 100.0
HIGH_CONFIDENCE = 90

# FIRMS area API
FIRMS_BASE = "https://firms.modaps.eosdis.nasa.gov/api/country/csv"
FIRMS_API_KEY = os.getenv("NASA_FIRMS_API_KEY", "")
FIRMS_SOURCE = os.getenv("FIRMS_SOURCE", "VIIRS_SNPP_NRT")
FIRMS_AREA = os.getenv("FIRMS_AREA", "KEN")
FIRMS_TIMEOUT = 30

# VIIRS reports confidence as a class letter rather than a percentage
CONFIDENCE_CLASSES = {"l": 30, "low": 30, "n": 60, "nominal": 60, "h": 95, "high": 95}


@dataclass(frozen=True)
class GeoDetection:
    lat: float
    lon: float
    confidence: float
    frp: float = 0.0                  # Fire radiative power, MW
    brightness: float = 0.0           # Kelvin
    acquired_at: Optional[datetime] = None
    satellite: Optional[str] = None
    severity: Optional[Severity] = None


# =============================================================================
# FILTER + CLASSIFY
# =============================================================================

def classify_severity(frp: float, confidence: float) -> Severity:
    if frp > CRITICAL_FRP:
        return Severity.CRITICAL
    if frp > HIGH_FRP or confidence > HIGH_CONFIDENCE:
        return Severity.HIGH
    return Severity.MEDIUM


def _in_box(a_lat, a_lon, b_lat, b_lon, tolerance_deg: float) -> bool:
    return abs(a_lat - b_lat) < tolerance_deg and abs(a_lon - b_lon) < tolerance_deg


def filter_new_hotspots(
    candidates: Iterable[GeoDetection],
    recent_incidents: Iterable,
    tolerance_deg: float = DEFAULT_TOLERANCE_DEG,
    window_hours: int = DEFAULT_WINDOW_HOURS,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    dedupe_within_batch: bool = False,
) -> List[GeoDetection]:
    """
    Detections worth turning into new incidents, in input order, each with
    severity filled in.
    
    recent_incidents must already be limited to satellite incidents ingested
    within window_hours; the window is applied by the query, not here.
    With dedupe_within_batch, a surviving detection also suppresses later
    detections in the same batch that fall in its box.
    """
    known = [(inc.lat, inc.lon) for inc in recent_incidents]
    
    survivors = []
    for det in candidates:
        if det.confidence < min_confidence:
            continue
        if any(_in_box(det.lat, det.lon, lat, lon, tolerance_deg) for lat, lon in known):
            logger.debug(f"Skipping duplicate hotspot at {det.lat}, {det.lon}")
            continue
        survivors.append(replace(det, severity=classify_severity(det.frp, det.confidence)))
        if dedupe_within_batch:
            known.append((det.lat, det.lon))
    return survivors


def describe_detection(det: GeoDetection) -> str:
    when = det.acquired_at.strftime('%Y-%m-%d %H:%M') if det.acquired_at else "unknown"
    return (
        f"Satellite-detected fire hotspot. Confidence: {det.confidence:g}%, "
        f"Brightness: {det.brightness:g}K, Fire Power: {det.frp:.1f}MW. "
        f"Detection time: {when} UTC"
    )


# =============================================================================
# FIRMS CSV
# =============================================================================

def _parse_confidence(raw: Optional[str]) -> float:
    if raw is None:
        return 0.0
    raw = raw.strip()
    try:
        return float(raw)
    except ValueError:
        return float(CONFIDENCE_CLASSES.get(raw.lower(), 0))


def _parse_float(raw: Optional[str]) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0.0


def _parse_acquired(acq_date: Optional[str], acq_time: Optional[str]) -> Optional[datetime]:
    """FIRMS gives acq_date 'YYYY-MM-DD' and acq_time 'HHMM' (UTC)."""
    if not acq_date:
        return None
    hhmm = (acq_time or "0").strip().zfill(4)
    try:
        return datetime.strptime(f"{acq_date.strip()} {hhmm[:2]}:{hhmm[2:4]}", "%Y-%m-%d %H:%M").replace(
            tzinfo=timezone.utc
        )
    except ValueError:
        return None


def parse_firms_csv(csv_text: str) -> List[GeoDetection]:
    """Parse a FIRMS CSV export. Rows without usable coordinates are skipped."""
    detections = []
    reader = csv.DictReader(io.StringIO(csv_text.strip()))
    for row in reader:
        row = {(k or "").strip(): (v or "").strip() for k, v in row.items()}
        try:
            lat = float(row.get("latitude"))
            lon = float(row.get("longitude"))
        except (TypeError, ValueError):
            continue
        if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
            continue
        detections.append(GeoDetection(
            lat=lat,
            lon=lon,
            confidence=_parse_confidence(row.get("confidence")),
            frp=_parse_float(row.get("frp")),
            brightness=_parse_float(row.get("bright_ti4") or row.get("brightness")),
            acquired_at=_parse_acquired(row.get("acq_date"), row.get("acq_time")),
            satellite=row.get("satellite") or None,
        ))
    return detections


def fetch_firms_csv(
    api_key: Optional[str] = None,
    source: str = FIRMS_SOURCE,
    area: str = FIRMS_AREA,
    days: int = 1,
) -> str:
    """
    Download the last `days` of detections for a country.
    Raises RuntimeError when no key is configured; HTTP errors propagate.
    """
    key = api_key or FIRMS_API_KEY
    if not key:
        raise RuntimeError("NASA_FIRMS_API_KEY not configured")
    
    url = f"{FIRMS_BASE}/{key}/{source}/{area}/{days}"
    logger.info(f"Fetching FIRMS hotspots: {source}/{area}/{days}")
    response = requests.get(url, timeout=FIRMS_TIMEOUT)
    response.raise_for_status()
    return response.text
