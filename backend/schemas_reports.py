"""
Report Pydantic Schemas - in-memory entity tree

Both report variants share the Intervention shell:
- FixedReport:    Intervention -> Unit -> GasDetector -> AlarmThreshold
                                       -> FlameDetector
- PortableReport: Intervention -> PortableDetector -> PortableGas

Numeric-looking fields (calibration values, coefficients, threshold values) are
display strings here ("12,5" is fine). They become numbers only in
report_persistence.py.

Entity ids are either a local id ("local-...", see report_identity.py) or the
id the store assigned. Children carry parent_id so a promoted parent id can be
pushed down before any child is written.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Union, Literal
from enum import Enum


EntityId = Union[int, str]

DEFAULT_ZERO_GAS = "Air synthétique 20,9%vol O2"
DEFAULT_CONNECTION = "4-20mA"
DEFAULT_CONDITION = "Bon"
DEFAULT_STATUS = "OK"


# =============================================================================
# ENUMS
# =============================================================================

class ReportVariant(str, Enum):
    FIXED = "fixed"
    PORTABLE = "portable"


class SaveMode(str, Enum):
    CREATE_NEW = "create_new"
    UPDATE_IN_PLACE = "update_in_place"
    DUPLICATE_AS_NEW = "duplicate_as_new"


class WizardStep(str, Enum):
    INFO = "info"
    CLIENT = "client"
    UNIT = "unit"
    PORTABLE = "portable"
    CONCLUSION = "conclusion"


class UnitKind(str, Enum):
    CENTRALE = "centrale"
    AUTOMATE = "automate"


class InterlockState(str, Enum):
    OPERATIONAL = "operational"
    PARTIAL = "partial"
    NON_OPERATIONAL = "non_operational"


class InterventionTypeTag(str, Enum):
    """Labels shown to technicians. Store codes in INTERVENTION_TYPE_CODES."""
    MAINTENANCE_PREVENTIVE = "Maintenance préventive"
    MAINTENANCE_CORRECTIVE = "Maintenance corrective"
    INSTALLATION = "Installation"
    MISE_EN_SERVICE = "Mise en service"
    DEPANNAGE = "Dépannage"
    ETALONNAGE = "Étalonnage"
    VERIFICATION_PERIODIQUE = "Vérification périodique"
    REPARATION = "Réparation"
    DIAGNOSTIC = "Diagnostic"
    FORMATION = "Formation"
    AUDIT = "Audit"
    AUTRE = "Autre"

    @property
    def code(self) -> str:
        return INTERVENTION_TYPE_CODES[self]

    @classmethod
    def from_code(cls, code: str) -> Optional["InterventionTypeTag"]:
        for tag, tag_code in INTERVENTION_TYPE_CODES.items():
            if tag_code == code:
                return tag
        return None


INTERVENTION_TYPE_CODES = {
    InterventionTypeTag.MAINTENANCE_PREVENTIVE: "maintenance_preventive",
    InterventionTypeTag.MAINTENANCE_CORRECTIVE: "maintenance_corrective",
    InterventionTypeTag.INSTALLATION: "installation",
    InterventionTypeTag.MISE_EN_SERVICE: "mise_en_service",
    InterventionTypeTag.DEPANNAGE: "depannage",
    InterventionTypeTag.ETALONNAGE: "etalonnage",
    InterventionTypeTag.VERIFICATION_PERIODIQUE: "verification_periodique",
    InterventionTypeTag.REPARATION: "reparation",
    InterventionTypeTag.DIAGNOSTIC: "diagnostic",
    InterventionTypeTag.FORMATION: "formation",
    InterventionTypeTag.AUDIT: "audit",
    InterventionTypeTag.AUTRE: "autre",
}


# =============================================================================
# CALIBRATION RECORDS (shared by gas detectors and portable gases)
# =============================================================================

class ZeroCalibration(BaseModel):
    """Zero check against a reference gas"""
    gas: str = DEFAULT_ZERO_GAS
    value_before: str = ""
    value_after: str = ""
    status: str = DEFAULT_STATUS


class SensitivityCalibration(BaseModel):
    """Span check with a test gas; coefficient = theoretical / measured"""
    gas: str = ""
    value_before: str = ""   # Theoretical (test gas concentration)
    value_after: str = ""    # Measured
    unit: str = "ppm"
    coefficient: str = ""
    status: str = DEFAULT_STATUS


# =============================================================================
# FIXED INSTALLATION ENTITIES
# =============================================================================

class AlarmThreshold(BaseModel):
    id: EntityId
    parent_id: Optional[EntityId] = None
    name: str = "Seuil 1"
    value: str = ""
    unit: str = "ppm"
    interlock_description: str = ""
    interlock_state: InterlockState = InterlockState.OPERATIONAL
    # Independent axes: untested does not imply non operational
    operational: bool = True
    supervised: bool = False
    untested: bool = False


class GasDetector(BaseModel):
    id: EntityId
    parent_id: Optional[EntityId] = None
    line: str = ""
    make: str = ""
    model: str = ""
    serial_number: str = ""
    gas_type: str = ""
    connection_type: str = DEFAULT_CONNECTION
    connection_other: str = ""
    measurement_range: str = ""
    response_time: str = ""
    zero: ZeroCalibration = Field(default_factory=ZeroCalibration)
    sensitivity: SensitivityCalibration = Field(default_factory=SensitivityCalibration)
    operational: bool = True
    untested: bool = False
    replacement_date: str = ""
    next_replacement_date: str = ""
    thresholds: List[AlarmThreshold] = Field(default_factory=list)


class FlameDetector(BaseModel):
    id: EntityId
    parent_id: Optional[EntityId] = None
    line: str = ""
    make: str = ""
    model: str = ""
    serial_number: str = ""
    connection_type: str = DEFAULT_CONNECTION
    connection_other: str = ""
    measurement_range: str = ""
    test_distance: str = ""
    response_time: str = ""
    test_status: str = DEFAULT_STATUS
    interlock_description: str = ""
    interlock_state: InterlockState = InterlockState.OPERATIONAL
    operational: bool = True
    untested: bool = False


class BackupPower(BaseModel):
    """AES record embedded in a unit; present when the unit has one"""
    model: str = ""
    status: str = DEFAULT_CONDITION
    inverter_backed: bool = False
    replacement_date: str = ""
    next_due_date: str = ""


class Unit(BaseModel):
    id: EntityId
    parent_id: Optional[EntityId] = None
    kind: UnitKind = UnitKind.CENTRALE
    make: str = ""
    model: str = ""
    serial_number: str = ""
    firmware: str = ""
    condition: str = DEFAULT_CONDITION
    backup_power: Optional[BackupPower] = None
    gas_detectors: List[GasDetector] = Field(default_factory=list)
    flame_detectors: List[FlameDetector] = Field(default_factory=list)

    # Free-text findings
    observations: str = ""
    work_performed: str = ""
    anomalies: str = ""
    recommendations: str = ""
    parts_replaced: str = ""

    def has_observations(self) -> bool:
        return any([
            self.observations, self.work_performed, self.anomalies,
            self.recommendations, self.parts_replaced,
        ])


# =============================================================================
# PORTABLE INSTALLATION ENTITIES
# =============================================================================

class PortableGas(BaseModel):
    id: EntityId
    parent_id: Optional[EntityId] = None
    gas_type: str = ""
    measurement_range: str = ""
    replacement_date: str = ""
    next_replacement_date: str = ""
    zero: ZeroCalibration = Field(default_factory=lambda: ZeroCalibration(gas=""))
    sensitivity: SensitivityCalibration = Field(default_factory=lambda: SensitivityCalibration(unit="%LIE"))
    # Flat limit fields, kept as written
    threshold_1: str = ""
    threshold_2: str = ""
    threshold_3: str = ""
    vme: str = ""
    vle: str = ""


class PortableDetector(BaseModel):
    id: EntityId
    parent_id: Optional[EntityId] = None
    make: str = ""
    model: str = ""
    serial_number: str = ""
    condition: str = DEFAULT_CONDITION
    audible_alarm: bool = False
    visual_alarm: bool = False
    vibrating_alarm: bool = False
    parts_replaced: str = ""
    gases: List[PortableGas] = Field(default_factory=list)


# =============================================================================
# INTERVENTION (root)
# =============================================================================

class Photo(BaseModel):
    """
    Photo reference. `path` is set once the blob is stored; `content` holds
    bytes still waiting to be uploaded on the next save.
    """
    id: EntityId
    path: Optional[str] = None
    filename: str = ""
    category: str = "conclusion"
    content: Optional[bytes] = Field(default=None, exclude=True, repr=False)


class Intervention(BaseModel):
    id: EntityId
    variant: ReportVariant
    intervention_date: str = ""     # YYYY-MM-DD
    start_time: str = ""            # HH:MM
    end_time: str = ""              # HH:MM
    technician: str = ""
    intervention_types: List[InterventionTypeTag] = Field(default_factory=list)

    client_id: Optional[int] = None
    site_id: Optional[int] = None
    room: str = ""
    site_contact: str = ""
    contact_phone: str = ""
    report_email: str = ""

    general_observations: str = ""
    conclusion: str = ""
    photos: List[Photo] = Field(default_factory=list)


class FixedReport(Intervention):
    variant: Literal[ReportVariant.FIXED] = ReportVariant.FIXED
    units: List[Unit] = Field(default_factory=list)


class PortableReport(Intervention):
    variant: Literal[ReportVariant.PORTABLE] = ReportVariant.PORTABLE
    portable_detectors: List[PortableDetector] = Field(default_factory=list)


# =============================================================================
# API SCHEMAS
# =============================================================================

class SaveOutcome(BaseModel):
    """Result of a successful save"""
    intervention_id: EntityId
    mode: SaveMode
    skipped_photos: List[str] = Field(default_factory=list)


class SessionCreate(BaseModel):
    variant: ReportVariant = ReportVariant.FIXED


class EditAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    UPDATE = "update"
    RECALCULATE = "recalculate"


class EditTarget(str, Enum):
    INTERVENTION = "intervention"
    CLIENT = "client"
    UNIT = "unit"
    BACKUP_POWER = "backup_power"
    GAS_DETECTOR = "gas_detector"
    THRESHOLD = "threshold"
    FLAME_DETECTOR = "flame_detector"
    PORTABLE = "portable"
    PORTABLE_GAS = "portable_gas"


class ReportEdit(BaseModel):
    """
    One edit applied to the session tree.
    indices address the target from the top: [unit, detector, threshold]
    """
    action: EditAction
    target: EditTarget
    indices: List[int] = Field(default_factory=list)
    patch: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "action": "update",
                "target": "threshold",
                "indices": [0, 0, 0],
                "patch": {"value": "50", "unit": "ppm"}
            }
        }


class PhotoAttach(BaseModel):
    filename: str
    content_base64: str
    category: str = "conclusion"
