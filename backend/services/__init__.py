"""
ForestLink core services.

Pure dispatch and alerting logic; persistence and messaging side effects
live in incident_helpers.py and sms_service.py.
"""
