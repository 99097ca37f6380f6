"""
Dispatch and alerting error kinds.

Computational errors (InvalidRadius, InvalidTransition, InvalidCoordinates)
go straight back to the immediate caller. NoRangerAvailable and
AssignmentConflict are normal outcomes, not faults.
"""

from typing import Optional


class DispatchError(Exception):
    """Base class for errors raised by the dispatch/alerting core"""


class InvalidCoordinates(DispatchError, ValueError):
    def __init__(self, lat, lon):
        self.lat = lat
        self.lon = lon
        super().__init__(f"Coordinates out of range: lat={lat}, lon={lon}")


class NoRangerAvailable(DispatchError):
    def __init__(self, message: str = "No available rangers"):
        super().__init__(message)


class AssignmentConflict(DispatchError):
    """Another request assigned this incident (or claimed this ranger) first"""
    
    def __init__(self, incident_id: str, ranger_id: Optional[str] = None):
        self.incident_id = incident_id
        self.ranger_id = ranger_id
        super().__init__(f"Incident {incident_id} is already assigned")


class InvalidRadius(DispatchError, ValueError):
    def __init__(self, radius_km, max_radius_km):
        self.radius_km = radius_km
        self.max_radius_km = max_radius_km
        super().__init__(f"Radius must be greater than 0 and at most {max_radius_km} km (got {radius_km})")


class InvalidTransition(DispatchError):
    def __init__(self, current, target, reason: Optional[str] = None):
        self.current = current
        self.target = target
        self.reason = reason
        message = f"Cannot move incident from {getattr(current, 'value', current)} to {getattr(target, 'value', target)}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
