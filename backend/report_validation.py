"""
Step validation for the report wizard.

Pure functions: (step, tree, current index) -> list of missing field labels.
Each step only looks at its own required fields, and the equipment step only
looks at the item currently shown, not the whole collection.
"""

from typing import List, Optional
import re

from report_helpers import parse_date
from schemas_reports import WizardStep
from report_errors import ValidationFailure

# (attribute, label shown to the technician)
INFO_REQUIRED = [
    ("intervention_date", "date"),
    ("start_time", "start time"),
    ("end_time", "end time"),
    ("technician", "technician"),
]

CLIENT_REQUIRED = [
    ("client_id", "client"),
    ("site_id", "site"),
]

# Stored as DATE and String(5) columns
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

EQUIPMENT_REQUIRED = [
    ("make", "make"),
    ("model", "model"),
    ("serial_number", "serial number"),
]


def _blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _missing(entity, required) -> List[str]:
    return [label for attr, label in required if _blank(getattr(entity, attr, None))]


def missing_info_fields(report) -> List[str]:
    missing = _missing(report, INFO_REQUIRED)
    if not report.intervention_types:
        missing.append("intervention type")
    return missing


def invalid_info_fields(report) -> List[str]:
    """Filled-in info fields the store would reject or silently drop"""
    invalid = []
    if not _blank(report.intervention_date) and parse_date(report.intervention_date) is None:
        invalid.append("date (YYYY-MM-DD)")
    for attr, label in (("start_time", "start time"), ("end_time", "end time")):
        value = getattr(report, attr)
        if not _blank(value) and not TIME_PATTERN.match(value.strip()):
            invalid.append(f"{label} (HH:MM)")
    return invalid


def missing_client_fields(report) -> List[str]:
    return _missing(report, CLIENT_REQUIRED)


def missing_equipment_fields(item) -> List[str]:
    if item is None:
        return [label for _, label in EQUIPMENT_REQUIRED]
    return _missing(item, EQUIPMENT_REQUIRED)


def missing_fields(step: WizardStep, tree, current_index: Optional[int] = None) -> List[str]:
    """Missing required fields for `step`; empty list means the step is complete"""
    report = tree.report
    if step == WizardStep.INFO:
        return missing_info_fields(report)
    if step == WizardStep.CLIENT:
        return missing_client_fields(report)
    if step in (WizardStep.UNIT, WizardStep.PORTABLE):
        items = tree.repeated_items
        index = current_index or 0
        item = items[index] if 0 <= index < len(items) else None
        return missing_equipment_fields(item)
    # Conclusion has no required fields
    return []


def invalid_fields(step: WizardStep, tree) -> List[str]:
    if step == WizardStep.INFO:
        return invalid_info_fields(tree.report)
    return []


def is_step_valid(step: WizardStep, tree, current_index: Optional[int] = None) -> bool:
    return not missing_fields(step, tree, current_index) and not invalid_fields(step, tree)


def validate_step(step: WizardStep, tree, current_index: Optional[int] = None):
    """Raise ValidationFailure listing the missing and malformed fields"""
    missing = missing_fields(step, tree, current_index)
    invalid = invalid_fields(step, tree)
    if missing or invalid:
        raise ValidationFailure(step.value, missing, invalid)
