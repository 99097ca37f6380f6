"""
Closed value sets for ForestLink.

Stored as their string values in the database; parsed back into these enums
at the service boundary so status and threat handling never falls through
on an unknown string.
"""

from enum import Enum


class ThreatType(str, Enum):
    FIRE = "fire"
    DEFORESTATION = "deforestation"
    ILLEGAL_LOGGING = "illegal_logging"
    CHARCOAL_PRODUCTION = "charcoal_production"
    POACHING = "poaching"
    OTHER = "other"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class IncidentSource(str, Enum):
    APP = "app"
    SMS = "sms"
    USSD = "ussd"
    SATELLITE = "satellite"


class IncidentStatus(str, Enum):
    REPORTED = "reported"
    ASSIGNED = "assigned"
    EN_ROUTE = "en_route"
    ON_SCENE = "on_scene"
    RESOLVED = "resolved"
    FALSE_ALARM = "false_alarm"


class RangerStatus(str, Enum):
    AVAILABLE = "available"
    ON_DUTY = "on_duty"
    EN_ROUTE = "en_route"
    ON_SCENE = "on_scene"
    OFF_DUTY = "off_duty"


class ResponseKind(str, Enum):
    SAFE = "SAFE"
    NEED_HELP = "NEED_HELP"
    EVACUATING = "EVACUATING"
    OTHER = "OTHER"


class AlertType(str, Enum):
    NEW_INCIDENT = "new_incident"
    HIGH_SEVERITY = "high_severity"
    SMS_REPORT = "sms_report"
    CITIZEN_REPORT = "citizen_report"
    DISPATCH = "dispatch"
    HELP_REQUEST = "help_request"
