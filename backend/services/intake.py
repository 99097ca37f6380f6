"""
Incident intake rules shared by the SMS, USSD and app entry points.

SMS reports look like "FIRE Kinale" or "LOGGING Mt Kenya": a threat keyword
followed by a place name.
"""

from dataclasses import dataclass
from typing import Optional

from enums import AlertType, IncidentSource, Severity, ThreatType

SMS_KEYWORDS = {
    "FIRE": ThreatType.FIRE,
    "BURN": ThreatType.FIRE,
    "SMOKE": ThreatType.FIRE,
    "MOTO": ThreatType.FIRE,            # Swahili: fire
    "LOGGING": ThreatType.DEFORESTATION,
    "CUT": ThreatType.DEFORESTATION,
    "TREE": ThreatType.DEFORESTATION,
    "CHARCOAL": ThreatType.CHARCOAL_PRODUCTION,
    "POACHING": ThreatType.POACHING,
}

SMS_USAGE = "Send: FIRE [location], LOGGING [location], CHARCOAL [location] or POACHING [location]"


class ReportFormatError(ValueError):
    """Inbound SMS report could not be parsed; message is the reply text"""


@dataclass(frozen=True)
class SmsReport:
    threat_type: ThreatType
    place: str


def parse_sms_report(body: Optional[str]) -> SmsReport:
    parts = (body or "").split()
    if len(parts) < 2:
        raise ReportFormatError(SMS_USAGE)
    
    threat = SMS_KEYWORDS.get(parts[0].upper())
    if threat is None:
        raise ReportFormatError(SMS_USAGE)
    
    return SmsReport(threat_type=threat, place=" ".join(parts[1:]))


def default_severity(threat_type) -> Severity:
    """Severity for community reports that don't state one"""
    return Severity.HIGH if ThreatType(threat_type) == ThreatType.FIRE else Severity.MEDIUM


def alert_type_for(incident) -> AlertType:
    if Severity(incident.severity) >= Severity.HIGH:
        return AlertType.HIGH_SEVERITY
    source = IncidentSource(incident.source)
    if source == IncidentSource.SMS:
        return AlertType.SMS_REPORT
    if source == IncidentSource.APP:
        return AlertType.CITIZEN_REPORT
    return AlertType.NEW_INCIDENT


def new_incident_alert_text(incident) -> tuple:
    """(title, message) for the ranger alert raised on a new incident"""
    title = f"New {incident.severity.upper()} Severity Incident"
    message = f"{ThreatType(incident.threat_type).label} reported via {incident.source.upper()}"
    return title, message


def receipt_text(incident, place: Optional[str] = None) -> str:
    """Confirmation sent back to an SMS/USSD reporter"""
    where = f" at {place}" if place else ""
    return (
        f"Report received! ID: #{incident.short_ref}. "
        f"{ThreatType(incident.threat_type).label.capitalize()}{where}. "
        f"Rangers alerted. Thank you for protecting our forests!"
    )


def verification_text(incident) -> str:
    """Thank-you SMS once an admin verifies a community report"""
    return (
        f"Thank you for keeping Kenya safe! Your {ThreatType(incident.threat_type).label} report "
        f"has been VERIFIED by our team. Reference: {incident.short_ref}"
    )
