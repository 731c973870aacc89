"""
Report Helper Functions

Contains:
- Display-string <-> number conversion (decimal comma tolerant)
- Sensitivity coefficient computation
- Date conversion at the store boundary
- Audit logging
"""

from sqlalchemy.orm import Session
from typing import Optional
from datetime import date
import math
import logging

from models import AuditLog

logger = logging.getLogger(__name__)


# =============================================================================
# NUMERIC FIELDS
# =============================================================================

def parse_decimal(value) -> Optional[float]:
    """
    Parse a display string to float. "12,5" -> 12.5, "" -> None, "abc" -> None.
    Never raises.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None

    text = str(value).strip().replace(',', '.')
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def format_decimal(value) -> str:
    """Number from the store back to a display string: 75.0 -> "75", 12.5 -> "12.5" """
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def calculate_coefficient(theoretical, measured) -> Optional[str]:
    """
    theoretical / measured rounded to 3 decimals, as a display string.
    Returns None when either value does not parse or measured is zero;
    callers then leave the existing coefficient untouched.
    """
    theoretical_value = parse_decimal(theoretical)
    measured_value = parse_decimal(measured)
    if theoretical_value is None or measured_value is None or measured_value == 0:
        return None
    return f"{theoretical_value / measured_value:.3f}"


# =============================================================================
# DATES
# =============================================================================

def parse_date(value) -> Optional[date]:
    """YYYY-MM-DD display string -> date. Blank or malformed -> None."""
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        logger.debug(f"Ignoring malformed date: {value!r}")
        return None


def format_date(value) -> str:
    if value is None:
        return ""
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


# =============================================================================
# AUDIT LOGGING
# =============================================================================

def log_report_audit(
    db: Session,
    action: str,
    intervention_id: int,
    variant: str,
    technician_name: Optional[str],
    summary: str,
    fields_changed: Optional[dict] = None
):
    """
    Log a report save to the audit trail.
    Uses the technician named on the report (honor system).
    Failures are logged, never raised: the report itself is already saved.
    """
    try:
        entry = AuditLog(
            technician_name=technician_name or None,
            action=action,
            entity_type="intervention",
            entity_id=intervention_id,
            entity_display=f"Intervention {intervention_id} ({variant})",
            summary=summary,
            fields_changed=fields_changed,
        )
        db.add(entry)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning(f"Failed to write audit log for intervention {intervention_id}: {e}")
