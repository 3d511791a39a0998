"""
Wizard Workflow State Machine
Defines the persisted wizard steps, the screens of the order wizard and the
rules that decide whether a screen may render for a given submission.

Steps move forward only:
form_submitted → service_selected → addons_selected → checkout → completed
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Any


class WizardStep(str, Enum):
    """Persisted progress marker on a submission."""
    FORM_SUBMITTED = "form_submitted"      # Intake form stored
    SERVICE_SELECTED = "service_selected"  # Document type chosen
    ADDONS_SELECTED = "addons_selected"    # Service options chosen
    CHECKOUT = "checkout"                  # Add-ons chosen, totals priced
    COMPLETED = "completed"                # Payment verified


class Screen(str, Enum):
    INTAKE = "intake"
    DOCUMENT_TYPE = "document_type"
    SERVICE_SELECTION = "service_selection"
    ADD_ONS = "add_ons"
    CHECKOUT = "checkout"
    COMPLETION = "completion"


STEP_ORDER: List[WizardStep] = [
    WizardStep.FORM_SUBMITTED,
    WizardStep.SERVICE_SELECTED,
    WizardStep.ADDONS_SELECTED,
    WizardStep.CHECKOUT,
    WizardStep.COMPLETED,
]


# Whitelist of step transitions - exactly one successor per step
ALLOWED_TRANSITIONS: Dict[WizardStep, List[WizardStep]] = {
    WizardStep.FORM_SUBMITTED: [WizardStep.SERVICE_SELECTED],
    WizardStep.SERVICE_SELECTED: [WizardStep.ADDONS_SELECTED],
    WizardStep.ADDONS_SELECTED: [WizardStep.CHECKOUT],
    WizardStep.CHECKOUT: [WizardStep.COMPLETED],
    WizardStep.COMPLETED: [],
}


# Step that must be persisted for a screen to render. Intake has no requirement.
SCREEN_REQUIRED_STEP: Dict[Screen, Optional[WizardStep]] = {
    Screen.INTAKE: None,
    Screen.DOCUMENT_TYPE: WizardStep.FORM_SUBMITTED,
    Screen.SERVICE_SELECTION: WizardStep.SERVICE_SELECTED,
    Screen.ADD_ONS: WizardStep.ADDONS_SELECTED,
    Screen.CHECKOUT: WizardStep.CHECKOUT,
    Screen.COMPLETION: WizardStep.COMPLETED,
}


# Step written when the client finishes a screen
SCREEN_COMPLETES_TO: Dict[Screen, WizardStep] = {
    Screen.DOCUMENT_TYPE: WizardStep.SERVICE_SELECTED,
    Screen.SERVICE_SELECTION: WizardStep.ADDONS_SELECTED,
    Screen.ADD_ONS: WizardStep.CHECKOUT,
}


# Screen shown for a persisted step
STEP_SCREEN: Dict[WizardStep, Screen] = {
    step: screen for screen, step in SCREEN_REQUIRED_STEP.items() if step is not None
}


# Catalog entry point; every wizard run starts from a service page
ENTRY_POINT = "/services"

SCREEN_PATHS: Dict[Screen, str] = {
    Screen.INTAKE: "/services/{slug}",
    Screen.DOCUMENT_TYPE: "/services/{slug}/document-type",
    Screen.SERVICE_SELECTION: "/services/{slug}/service-selection",
    Screen.ADD_ONS: "/services/{slug}/add-ons",
    Screen.CHECKOUT: "/checkout",
    Screen.COMPLETION: "/thank-you",
}


@dataclass(frozen=True)
class GuardDecision:
    action: str                      # "render" | "redirect"
    screen: Optional[Screen] = None  # screen to show
    target: Optional[str] = None     # redirect path

    @property
    def render(self) -> bool:
        return self.action == "render"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "screen": self.screen.value if self.screen else None,
            "target": self.target,
        }


def step_index(step: WizardStep) -> int:
    return STEP_ORDER.index(step)


def parse_step(value: Any) -> Optional[WizardStep]:
    """Coerce a stored step value. Unknown values are treated as no progress."""
    if isinstance(value, WizardStep):
        return value
    try:
        return WizardStep(value)
    except ValueError:
        return None


def is_valid_transition(from_step: WizardStep, to_step: WizardStep) -> bool:
    """Check if a step transition is valid"""
    if from_step not in ALLOWED_TRANSITIONS:
        return False
    return to_step in ALLOWED_TRANSITIONS[from_step]


def previous_step(step: WizardStep) -> Optional[WizardStep]:
    """The only step allowed to advance into `step`."""
    for source, targets in ALLOWED_TRANSITIONS.items():
        if step in targets:
            return source
    return None


def screen_path(screen: Screen, service_slug: Optional[str] = None) -> str:
    template = SCREEN_PATHS[screen]
    if "{slug}" in template:
        if not service_slug:
            return ENTRY_POINT
        return template.format(slug=service_slug)
    return template


def guard_screen(screen: Screen, submission: Optional[Dict[str, Any]]) -> GuardDecision:
    """
    Decide whether a wizard screen may render.

    - no submission: redirect to the catalog entry point
    - persisted step behind the requirement: redirect to the entry point
    - persisted step ahead: redirect forward to the screen of the persisted step
    - otherwise render
    """
    required = SCREEN_REQUIRED_STEP[screen]
    if required is None:
        return GuardDecision(action="render", screen=screen)

    if not submission:
        return GuardDecision(action="redirect", target=ENTRY_POINT)

    current = parse_step(submission.get("current_step"))
    if current is None or step_index(current) < step_index(required):
        return GuardDecision(action="redirect", target=ENTRY_POINT)

    if step_index(current) > step_index(required):
        forward = STEP_SCREEN[current]
        return GuardDecision(
            action="redirect",
            screen=forward,
            target=screen_path(forward, submission.get("service_slug")),
        )

    return GuardDecision(action="render", screen=screen)
