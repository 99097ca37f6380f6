"""
USSD reporting menu (Africa's Talking).

The carrier sends the whole input path each time ("1*Kinale*1"), plus a
session id. Menu state lives in a persisted session row keyed by that id
with an expiry, so any API instance can continue a dialogue; this module
only decides the next screen from (state, latest input).

Replies start with "CON " (keep session open) or "END " (close it).
Database work the screen needs is returned as an action for the caller.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from enums import ThreatType
from services.intake import SMS_KEYWORDS

DEFAULT_SESSION_TTL_SECONDS = 300

ACTION_LIST_REPORTS = "list_reports"
ACTION_CREATE_REPORT = "create_report"

MAIN_MENU = """CON ForestGuard Kenya
Protect Our Forests

1. Report Fire
2. Report Illegal Logging
3. Report Charcoal Production
4. Report Other Threat
5. Check My Reports
6. Report Another Incident
0. Emergency Contacts"""

EMERGENCY_CONTACTS = """END Emergency Contacts

Emergency: 999
Kenya Forest Service: +254 700 000 000
Email: alerts@kfs.go.ke

ForestGuard Kenya
Thank you for protecting our forests!"""

MENU_THREATS = {
    "1": (ThreatType.FIRE, "Report Fire Alert\nEnter location name (e.g., Kinale, Mt Kenya, Karura):"),
    "2": (ThreatType.DEFORESTATION, "Report Illegal Logging\nEnter location name (e.g., Mau Forest, Aberdare):"),
    "3": (ThreatType.CHARCOAL_PRODUCTION, "Report Charcoal Production\nEnter location name:"),
}


@dataclass
class UssdScreen:
    text: str
    state: dict = field(default_factory=dict)
    action: Optional[str] = None

    @property
    def ends_session(self) -> bool:
        return self.text.startswith("END")


def split_inputs(text: Optional[str]) -> List[str]:
    if not text or not text.strip():
        return []
    return text.split("*")


def threat_from_description(description: str) -> ThreatType:
    for word in description.upper().split():
        if word in SMS_KEYWORDS:
            return SMS_KEYWORDS[word]
    return ThreatType.OTHER


def _end(text: str) -> UssdScreen:
    return UssdScreen(text=f"END {text}")


def _confirm_screen(state: dict) -> UssdScreen:
    label = state.get("custom_threat") or ThreatType(state["threat_type"]).label
    return UssdScreen(
        text=f"CON Confirm Report:\nType: {label}\nLocation: {state['place']}\n\n1. Confirm & Send\n2. Cancel",
        state={**state, "step": "confirm"},
    )


def next_screen(state: Optional[dict], text: Optional[str], service_code: str = "") -> UssdScreen:
    """
    Decide the reply for one USSD request.

    state is None for a new or expired session. A new session that already
    carries several inputs means the stored state was lost.
    """
    inputs = split_inputs(text)
    
    if state is None:
        if len(inputs) > 1:
            return _end(f"Session expired. Please dial {service_code} again.")
        state = {"step": "main"}
    
    if not inputs:
        return UssdScreen(text=MAIN_MENU, state={"step": "main"})
    
    step = state.get("step", "main")
    last = inputs[-1].strip()
    
    if step == "main":
        if last in MENU_THREATS:
            threat, prompt = MENU_THREATS[last]
            return UssdScreen(text=f"CON {prompt}", state={"step": "location", "threat_type": threat.value})
        if last == "4":
            return UssdScreen(
                text="CON Report Other Threat\nEnter threat type (e.g., Wildlife Poaching, Drought, Wildfire):",
                state={"step": "custom_threat"},
            )
        if last == "5":
            return UssdScreen(text="END ", state=state, action=ACTION_LIST_REPORTS)
        if last == "6":
            return UssdScreen(text=MAIN_MENU, state={"step": "main"})
        if last == "0":
            return UssdScreen(text=EMERGENCY_CONTACTS)
        return _end(f"Invalid option. Please dial {service_code} again.")
    
    if step == "custom_threat":
        if len(last) < 3:
            return _end(f"Threat type too short. Please dial {service_code} again.")
        threat = threat_from_description(last)
        return UssdScreen(
            text=f"CON Report {last}\nEnter location name:",
            state={"step": "location", "threat_type": threat.value, "custom_threat": last},
        )
    
    if step == "location":
        if len(last) < 2:
            return _end(f"Location too short. Please dial {service_code} again.")
        return _confirm_screen({**state, "place": last})
    
    if step == "confirm":
        if last == "1":
            return UssdScreen(text="END ", state=state, action=ACTION_CREATE_REPORT)
        if last == "2":
            return _end(f"Report cancelled. Dial {service_code} to try again.")
        return _end(f"Invalid option. Please dial {service_code} again.")
    
    return _end(f"Invalid input. Please dial {service_code} again.")


def format_report_list(reports, service_code: str = "") -> str:
    """END screen listing a reporter's recent incidents"""
    if not reports:
        return f"END No reports found from your number.\n\nDial {service_code} to report a threat."
    lines = ["Your Recent Reports:", ""]
    for index, report in enumerate(reports, start=1):
        status = "Verified" if report.verified else "Pending"
        lines.append(f"{index}. #{report.short_ref} - {ThreatType(report.threat_type).label}")
        lines.append(f"   Status: {status}")
        lines.append("")
    lines.append("Thank you for protecting our forests!")
    return "END " + "\n".join(lines)


def format_submitted(incident, state: dict) -> str:
    label = state.get("custom_threat") or ThreatType(incident.threat_type).label
    return (
        f"END Report Submitted!\n\nID: #{incident.short_ref}\nType: {label}\n"
        f"Location: {state.get('place')}\n\nRangers have been alerted.\n"
        f"You will receive SMS updates.\n\nThank you for protecting our forests!"
    )
