"""
Community Response Classifier

Turns inbound SMS/USSD replies into a response kind and works out which
incident the reply is about.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from enums import ResponseKind
from settings_helper import ensure_utc

logger = logging.getLogger(__name__)

KEYWORDS = {
    "SAFE": ResponseKind.SAFE,
    "NEED HELP": ResponseKind.NEED_HELP,
    "NEED_HELP": ResponseKind.NEED_HELP,
    "HELP": ResponseKind.NEED_HELP,
    "EVACUATING": ResponseKind.EVACUATING,
    "EVACUATION": ResponseKind.EVACUATING,
}

REFERENCE_PATTERN = re.compile(r"#([A-Za-z0-9]+)")

CONFIRMATIONS = {
    ResponseKind.SAFE: "Thank you! We have recorded that you are safe. Stay vigilant and report any changes.",
    ResponseKind.NEED_HELP: (
        "HELP REQUEST RECEIVED! Rangers have been alerted to your location. "
        "Stay in a safe place. We are coming to assist you."
    ),
    ResponseKind.EVACUATING: (
        "Evacuation status recorded. Move to a safe location away from the threat. "
        "Follow ranger instructions."
    ),
    ResponseKind.OTHER: "Your response has been received and logged. Thank you for keeping us updated!",
}


@dataclass(frozen=True)
class ClassifiedResponse:
    kind: ResponseKind
    note: Optional[str] = None
    reference: Optional[str] = None   # "#AB12CD34" when the reply named an incident


@dataclass(frozen=True)
class ResolvedIncident:
    incident_id: str
    matched_by: str                   # broadcast, reference, latest_incident


def classify_response(raw_text: Optional[str]) -> ClassifiedResponse:
    text = (raw_text or "").strip()
    upper = text.upper()
    
    if upper in KEYWORDS:
        return ClassifiedResponse(kind=KEYWORDS[upper])
    
    if upper.startswith("#"):
        parts = text.split()
        reference = parts[0]
        status = parts[1].upper() if len(parts) > 1 else None
        if status in KEYWORDS:
            return ClassifiedResponse(
                kind=KEYWORDS[status],
                note=f"Incident {reference}",
                reference=reference,
            )
        return ClassifiedResponse(kind=ResponseKind.OTHER, note=text, reference=reference)
    
    return ClassifiedResponse(kind=ResponseKind.OTHER, note=text or None)


def confirmation_for(kind: ResponseKind) -> str:
    return CONFIRMATIONS[kind]


def extract_reference(raw_text: Optional[str]) -> Optional[str]:
    """Short incident id from '#AB12CD34'-style text, without the '#'"""
    if not raw_text:
        return None
    match = REFERENCE_PATTERN.search(raw_text)
    return match.group(1) if match else None


MIN_UTC = datetime.min.replace(tzinfo=timezone.utc)


def _as_sortable(dt: Optional[datetime]) -> datetime:
    return ensure_utc(dt) or MIN_UTC


def resolve_target_incident(
    sender_phone: str,
    raw_text: Optional[str],
    recent_broadcasts: Iterable,
    recent_incidents_fallback: Iterable,
) -> Optional[ResolvedIncident]:
    """
    Which incident a reply belongs to.
    
    1. Latest broadcast (by sent_at) that reached sender_phone
    2. '#shortid' in the text, matched as an id prefix
    3. Most recent incident overall - imprecise when several are open
    
    None only when there are no incidents at all.
    """
    reached = [b for b in recent_broadcasts if sender_phone in (b.recipients or [])]
    if reached:
        latest = max(reached, key=lambda b: _as_sortable(b.sent_at))
        return ResolvedIncident(incident_id=latest.incident_id, matched_by="broadcast")
    
    incidents = list(recent_incidents_fallback)
    if not incidents:
        return None
    
    short_id = extract_reference(raw_text)
    if short_id:
        prefix = short_id.lower()
        for inc in sorted(incidents, key=lambda i: _as_sortable(i.created_at), reverse=True):
            if str(inc.id).lower().startswith(prefix):
                return ResolvedIncident(incident_id=inc.id, matched_by="reference")
    
    latest = max(incidents, key=lambda i: _as_sortable(i.created_at))
    logger.warning(f"Reply from {sender_phone} attributed to latest incident {latest.id} (no broadcast or reference)")
    return ResolvedIncident(incident_id=latest.id, matched_by="latest_incident")
