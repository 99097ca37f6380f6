"""
SMS Service for ForestLink
Sends outbound SMS via Africa's Talking (default) or Twilio.

Every send reports success per recipient; nothing here raises on a
delivery problem, so callers can keep going through a recipient list.
"""

import logging
import os
import re
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

# Provider configuration - load from environment variables
SMS_PROVIDER = os.getenv("SMS_PROVIDER", "africastalking").lower()
SMS_TIMEOUT = float(os.getenv("SMS_TIMEOUT", "10"))

AFRICAS_TALKING_URL = os.getenv("AFRICAS_TALKING_URL", "https://api.sandbox.africastalking.com/version1/messaging")
AFRICAS_TALKING_USERNAME = os.getenv("AFRICAS_TALKING_USERNAME", "")
AFRICAS_TALKING_API_KEY = os.getenv("AFRICAS_TALKING_API_KEY", "")
AFRICAS_TALKING_SENDER = os.getenv("AFRICAS_TALKING_SENDER", "")

TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID", "")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN", "")
TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER", "")

DEFAULT_COUNTRY_CODE = os.getenv("DEFAULT_COUNTRY_CODE", "254")

# Africa's Talking per-recipient statuses that mean the message was accepted
AT_SUCCESS_STATUSES = {"Success", "Sent", "Queued"}


def normalize_phone(phone: Optional[str], country_code: str = DEFAULT_COUNTRY_CODE) -> Optional[str]:
    """
    Normalize to E.164 with Kenyan defaults.
    
    "0712 345 678"   -> "+254712345678"
    "712345678"      -> "+254712345678"
    "254712345678"   -> "+254712345678"
    "whatsapp:+2547..." -> "+2547..."
    """
    if not phone:
        return None
    cleaned = re.sub(r"\s|-", "", phone.replace("whatsapp:", ""))
    if not cleaned:
        return None
    
    if cleaned.startswith("+"):
        return cleaned
    if cleaned.startswith("0") and len(cleaned) == 10:
        return f"+{country_code}{cleaned[1:]}"
    if cleaned.startswith("7") and len(cleaned) == 9:
        return f"+{country_code}{cleaned}"
    if cleaned.startswith(country_code):
        return f"+{cleaned}"
    return f"+{cleaned}"


def _send_africas_talking(to: str, message: str) -> bool:
    if not AFRICAS_TALKING_USERNAME or not AFRICAS_TALKING_API_KEY:
        logger.error("Africa's Talking credentials not configured - cannot send SMS")
        return False
    
    data = {
        "username": AFRICAS_TALKING_USERNAME,
        "to": to,
        "message": message,
    }
    if AFRICAS_TALKING_SENDER:
        data["from"] = AFRICAS_TALKING_SENDER
    
    try:
        with httpx.Client(timeout=SMS_TIMEOUT) as client:
            response = client.post(
                AFRICAS_TALKING_URL,
                data=data,
                headers={"apiKey": AFRICAS_TALKING_API_KEY, "Accept": "application/json"},
            )
            response.raise_for_status()
            result = response.json()
    except httpx.TimeoutException:
        logger.warning(f"Africa's Talking timeout sending to {to}")
        return False
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Africa's Talking error sending to {to}: {e}")
        return False
    
    recipients = result.get("SMSMessageData", {}).get("Recipients", [])
    if not recipients:
        logger.warning(f"Africa's Talking accepted no recipients for {to}: {result}")
        return False
    return all(r.get("status") in AT_SUCCESS_STATUSES for r in recipients)


def _send_twilio(to: str, message: str) -> bool:
    if not TWILIO_ACCOUNT_SID or not TWILIO_AUTH_TOKEN or not TWILIO_PHONE_NUMBER:
        logger.error("Twilio credentials not configured - cannot send SMS")
        return False
    
    url = f"https://api.twilio.com/2010-04-01/Accounts/{TWILIO_ACCOUNT_SID}/Messages.json"
    try:
        with httpx.Client(timeout=SMS_TIMEOUT) as client:
            response = client.post(
                url,
                data={"To": to, "From": TWILIO_PHONE_NUMBER, "Body": message},
                auth=(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN),
            )
            response.raise_for_status()
    except httpx.TimeoutException:
        logger.warning(f"Twilio timeout sending to {to}")
        return False
    except httpx.HTTPError as e:
        logger.warning(f"Twilio error sending to {to}: {e}")
        return False
    return True


def send_sms(to: str, message: str) -> bool:
    """
    Send one SMS.
    
    Args:
        to: Recipient phone number (normalized before sending)
        message: Message body
        
    Returns:
        True if the provider accepted the message, False otherwise
    """
    phone = normalize_phone(to)
    if not phone:
        logger.warning(f"Not sending SMS to unusable number: {to!r}")
        return False
    
    if SMS_PROVIDER == "twilio":
        ok = _send_twilio(phone, message)
    else:
        ok = _send_africas_talking(phone, message)
    
    if ok:
        logger.info(f"SMS sent to {phone}")
    return ok
