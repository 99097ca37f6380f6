"""
Community Broadcast Selector

Chooses which subscribers receive an incident alert, renders the alert
text, and fans the message out through a sender callable.

Sends are independent: a failure for one recipient never stops the others
and never undoes sends that already went out. Only confirmed recipients
are reported back for the broadcast log.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from services.errors import InvalidRadius
from services.location.distance import distance_km, point_of

logger = logging.getLogger(__name__)

DEFAULT_MAX_RADIUS_KM = 50.0
SOFT_MESSAGE_LIMIT = 160


# =============================================================================
# SELECTION
# =============================================================================

def validate_radius(radius_km: float, max_radius_km: float = DEFAULT_MAX_RADIUS_KM) -> float:
    if radius_km is None:
        raise InvalidRadius(radius_km, max_radius_km)
    radius_km = float(radius_km)
    if not (0 < radius_km <= max_radius_km):
        raise InvalidRadius(radius_km, max_radius_km)
    return radius_km


def select_recipients(
    incident_location,
    radius_km: float,
    subscribers: Iterable,
    max_radius_km: float = DEFAULT_MAX_RADIUS_KM,
) -> List[str]:
    """
    Phone numbers of subscribers within radius_km (boundary inclusive).
    Input order is kept; a number appears once even if listed twice.
    """
    radius_km = validate_radius(radius_km, max_radius_km)
    origin = point_of(incident_location)
    
    seen = set()
    recipients = []
    for sub in subscribers:
        phone = sub.phone_number
        if not phone or phone in seen:
            continue
        if distance_km(origin, sub) <= radius_km:
            seen.add(phone)
            recipients.append(phone)
    return recipients


# =============================================================================
# MESSAGE
# =============================================================================

@dataclass
class RenderedMessage:
    text: str
    is_custom: bool
    warnings: List[str] = field(default_factory=list)


def render_message(
    incident,
    custom_message: Optional[str] = None,
    soft_limit: int = SOFT_MESSAGE_LIMIT,
) -> RenderedMessage:
    """
    Custom text is used verbatim when non-blank; over-long custom text is
    allowed but reported in warnings. Otherwise build the standard alert.
    """
    if custom_message and custom_message.strip():
        warnings = []
        if len(custom_message) > soft_limit:
            warnings.append(
                f"Message is {len(custom_message)} characters; over {soft_limit} may be split into multiple SMS"
            )
        return RenderedMessage(text=custom_message, is_custom=True, warnings=warnings)
    
    threat = incident.threat_type.replace('_', ' ').upper()
    text = (
        f"FOREST ALERT: {threat} reported near you. "
        f"{incident.severity.upper()} severity. Rangers responding. "
        f"Reply SAFE, NEED_HELP or EVACUATING. ID: #{incident.id[:8].upper()}"
    )
    return RenderedMessage(text=text, is_custom=False)


# =============================================================================
# SENDING
# =============================================================================

@dataclass(frozen=True)
class PartialSendFailure:
    """Some recipients failed. Informational; successes stand."""
    attempted: int
    sent: int
    
    @property
    def failed(self) -> int:
        return self.attempted - self.sent


@dataclass
class BroadcastOutcome:
    message: str
    attempted: List[str]
    sent: List[str]
    failed: List[str]
    warnings: List[str] = field(default_factory=list)
    
    @property
    def sent_count(self) -> int:
        return len(self.sent)
    
    @property
    def attempted_count(self) -> int:
        return len(self.attempted)
    
    @property
    def failed_count(self) -> int:
        return len(self.failed)
    
    @property
    def partial_failure(self) -> Optional[PartialSendFailure]:
        if not self.failed:
            return None
        return PartialSendFailure(attempted=self.attempted_count, sent=self.sent_count)


def send_to_recipients(
    recipients: List[str],
    message: str,
    send: Callable[[str, str], bool],
    warnings: Optional[List[str]] = None,
) -> BroadcastOutcome:
    """
    Attempt every recipient. A send counts only when send() returns True;
    exceptions from one recipient are logged and the loop continues.
    """
    sent = []
    failed = []
    for phone in recipients:
        try:
            ok = send(phone, message)
        except Exception as e:
            logger.warning(f"Broadcast send to {phone} raised: {e}")
            ok = False
        if ok:
            sent.append(phone)
        else:
            failed.append(phone)
    
    outcome = BroadcastOutcome(
        message=message,
        attempted=list(recipients),
        sent=sent,
        failed=failed,
        warnings=list(warnings or []),
    )
    if outcome.partial_failure:
        logger.warning(f"Broadcast partially failed: {outcome.sent_count}/{outcome.attempted_count} sent")
    return outcome
