"""
Prompt Template Registry

Defines template IDs for everything the planner says to the user and
their German text.

Template Classification:
- Confirmation templates: restate a pending action before it runs
- Dialogue templates: status lines for lifecycle states
- Failure templates: not-understood, unavailable capability, save errors

Template Text:
- TEMPLATE_TEXT contains pattern strings with {placeholder} fields
- render() fills placeholders; missing placeholders raise KeyError
- Slot prompts and quick replies are NOT here: they live in the slot
  ruleset so they can change without a code release

Display labels:
- INTENT_LABELS, TARGET_LABELS, QUERY_LABELS, SLOT_LABELS map enum
  values to the short German phrases used inside templates
"""

from enum import Enum
from typing import Dict

from voiceplanner.contracts import (
    Intent,
    IntentKind,
    MutationType,
    QueryKind,
    SlotName,
    TargetView,
)


class PromptTemplateID(str, Enum):
    """
    Template identifiers.

    Naming convention: <GROUP>_<TOPIC>
    """
    # Confirmation templates
    CONFIRM_CREATE = "confirm_create"
    CONFIRM_UPDATE = "confirm_update"
    CONFIRM_DELETE = "confirm_delete"
    CONFIRM_RATE = "confirm_rate"
    CONFIRM_GENERIC = "confirm_generic"

    # Dialogue templates
    DIALOGUE_LISTENING = "dialogue_listening"
    DIALOGUE_DISAMBIGUATE = "dialogue_disambiguate"
    DIALOGUE_CHANGE = "dialogue_change"
    DIALOGUE_SAVING = "dialogue_saving"
    DIALOGUE_SAVED = "dialogue_saved"
    DIALOGUE_CANCELLED = "dialogue_cancelled"
    DIALOGUE_REVIEW = "dialogue_review"

    # Failure templates
    FAILURE_NOT_UNDERSTOOD = "failure_not_understood"
    FAILURE_NOT_SUPPORTED = "failure_not_supported"
    FAILURE_SLOT_EXHAUSTED = "failure_slot_exhausted"
    FAILURE_SAVE = "failure_save"
    FAILURE_CAPTURE = "failure_capture"
    FAILURE_UNAVAILABLE = "failure_unavailable"
    FAILURE_INTERNAL = "failure_internal"


TEMPLATE_TEXT: Dict[PromptTemplateID, str] = {
    # Confirmation templates
    PromptTemplateID.CONFIRM_CREATE: "Soll ich diesen Eintrag speichern: {summary}?",
    PromptTemplateID.CONFIRM_UPDATE: "Soll ich {target} so ändern: {changes}?",
    PromptTemplateID.CONFIRM_DELETE: (
        "Willst du {target} wirklich löschen? "
        "Das kann nicht rückgängig gemacht werden."
    ),
    PromptTemplateID.CONFIRM_RATE: (
        "Soll ich die Wirkung von {medication} mit {rating} von 10 bewerten?"
    ),
    PromptTemplateID.CONFIRM_GENERIC: "Meinst du: {summary}?",

    # Dialogue templates
    PromptTemplateID.DIALOGUE_LISTENING: "Ich höre zu.",
    PromptTemplateID.DIALOGUE_DISAMBIGUATE: "Meintest du {first} oder {second}?",
    PromptTemplateID.DIALOGUE_CHANGE: "Was möchtest du ändern?",
    PromptTemplateID.DIALOGUE_SAVING: "Einen Moment, ich speichere.",
    PromptTemplateID.DIALOGUE_SAVED: "Erledigt.",
    PromptTemplateID.DIALOGUE_CANCELLED: "Abgebrochen.",
    PromptTemplateID.DIALOGUE_REVIEW: "{summary}. Sag \"speichern\", wenn das so stimmt.",

    # Failure templates
    PromptTemplateID.FAILURE_NOT_UNDERSTOOD: (
        "Ich habe dich nicht klar verstanden, versuch's nochmal."
    ),
    PromptTemplateID.FAILURE_NOT_SUPPORTED: (
        "Das kann ich noch nicht. Du kannst zum Beispiel einen Eintrag anlegen "
        "oder nach deinen Einträgen fragen."
    ),
    PromptTemplateID.FAILURE_SLOT_EXHAUSTED: (
        "Ich konnte {slot} nicht erfassen. Bitte trage den Eintrag manuell ein."
    ),
    PromptTemplateID.FAILURE_SAVE: "Speichern fehlgeschlagen: {error}",
    PromptTemplateID.FAILURE_CAPTURE: "Ich habe nichts verstanden ({error}).",
    PromptTemplateID.FAILURE_UNAVAILABLE: "Spracheingabe ist nicht verfügbar: {error}",
    PromptTemplateID.FAILURE_INTERNAL: "Da ist etwas schiefgelaufen. Bitte versuch es nochmal.",
}


SLOT_LABELS: Dict[SlotName, str] = {
    SlotName.TIME: "den Zeitpunkt",
    SlotName.PAIN: "die Schmerzstärke",
    SlotName.MEDICATIONS: "die Medikamente",
}

TARGET_LABELS: Dict[TargetView, str] = {
    TargetView.ANALYSIS: "Auswertung",
    TargetView.DIARY: "Tagebuch",
    TargetView.MEDICATIONS: "Medikamente",
    TargetView.REMINDERS: "Erinnerungen",
    TargetView.SETTINGS: "Einstellungen",
    TargetView.DOCTORS: "Ärzte",
    TargetView.PROFILE: "Profil",
    TargetView.VOICE_NOTES: "Sprachnotizen",
    TargetView.DIARY_REPORT: "Arztbericht",
    TargetView.MEDICATION_EFFECTS: "Medikamentenwirkung",
    TargetView.NEW_ENTRY: "Neuer Eintrag",
}

QUERY_LABELS: Dict[QueryKind, str] = {
    QueryKind.LAST_ENTRY: "letzter Eintrag",
    QueryKind.LAST_ENTRY_WITH_MED: "letzter Eintrag mit {medication}",
    QueryKind.LAST_INTAKE_MED: "zuletzt genommenes Medikament",
    QueryKind.LIST_ENTRIES_WITH_MED: "Einträge mit {medication}",
    QueryKind.COUNT_MED_RANGE: "Einnahmen von {medication} in den letzten {days} Tagen",
    QueryKind.COUNT_MIGRAINE_RANGE: "Migränetage in den letzten {days} Tagen",
    QueryKind.AVG_PAIN_RANGE: "durchschnittliche Schmerzstärke der letzten {days} Tage",
}

MUTATION_LABELS: Dict[MutationType, str] = {
    MutationType.CREATE: "einen neuen Eintrag anlegen",
    MutationType.UPDATE: "einen Eintrag ändern",
    MutationType.DELETE: "einen Eintrag löschen",
    MutationType.RATE: "eine Medikamentenwirkung bewerten",
}


def get_template_text(template_id: str) -> str:
    """
    Get template text pattern for a template ID.

    Args:
        template_id: Template identifier string or enum

    Returns:
        str: Template text pattern with placeholders

    Raises:
        ValueError: If template_id is not a known identifier
    """
    # Convert string to enum if needed
    if isinstance(template_id, str) and not isinstance(template_id, PromptTemplateID):
        template_id = PromptTemplateID(template_id)
    return TEMPLATE_TEXT[template_id]


def render(template_id: str, **values: object) -> str:
    """
    Render a template with its placeholders filled.

    Raises:
        ValueError: If template_id is unknown
        KeyError: If a placeholder value is missing
    """
    return get_template_text(template_id).format(**values)


def describe_intent(intent: Intent) -> str:
    """Short German phrase for an intent, used in disambiguation questions."""
    if intent.kind is IntentKind.MUTATION:
        return MUTATION_LABELS[intent.mutation_type]
    if intent.kind is IntentKind.QUERY:
        return "eine Frage zu deinen Einträgen"
    if intent.kind is IntentKind.NAVIGATE:
        return f"{TARGET_LABELS[intent.target]} öffnen"
    return "etwas anderes"
