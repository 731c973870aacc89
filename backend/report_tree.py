"""
Report entity tree - the single owned, in-memory state of one report.

All edits go through these methods. Each edit touches only the addressed entity;
siblings are left as they are. Indexes are positions in the ordered lists:
appending keeps earlier indexes, removing shifts later ones down by one.

Units (fixed) and portable detectors (portable) are mandatory: the last one
cannot be removed. Detectors, thresholds and gases may be empty.
"""

from typing import List, Optional, Dict, Any, Iterable
import logging

from pydantic import BaseModel

from schemas_reports import (
    ReportVariant, Intervention, FixedReport, PortableReport,
    Unit, UnitKind, BackupPower, GasDetector, FlameDetector, AlarmThreshold,
    PortableDetector, PortableGas, Photo, EntityId,
)
from report_identity import IdentityAllocator
from report_errors import MinimumCardinalityViolation, UnknownFieldError
from report_helpers import calculate_coefficient

logger = logging.getLogger(__name__)

# Fields no patch may touch: identity and child collections have their own operations
_ALWAYS_PROTECTED = {"id", "parent_id"}


def _check_index(items: list, index: int, name: str):
    if not isinstance(index, int) or index < 0 or index >= len(items):
        raise IndexError(f"No {name} at index {index} (have {len(items)})")
    return items[index]


def _apply_patch(entity: BaseModel, patch: Dict[str, Any], protected: Iterable[str] = ()) -> BaseModel:
    """
    Return a validated copy of `entity` with `patch` applied.
    Nested records (calibration, backup power) are merged key by key.
    Protected collections are carried over by reference, not re-validated.
    """
    model = type(entity)
    protected = set(protected) | _ALWAYS_PROTECTED
    unknown = [key for key in patch if key not in model.model_fields or key in protected]
    for key, value in patch.items():
        current = getattr(entity, key, None)
        if isinstance(value, dict) and isinstance(current, BaseModel):
            unknown.extend(f"{key}.{sub}" for sub in value if sub not in type(current).model_fields)
    if unknown:
        raise UnknownFieldError(model.__name__, unknown)

    carried = {name for name in protected if name in model.model_fields} - _ALWAYS_PROTECTED
    data = entity.model_dump(exclude=carried)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(data.get(key), dict):
            data[key] = {**data[key], **value}
        else:
            data[key] = value

    updated = model.model_validate(data)
    for name in carried:
        setattr(updated, name, getattr(entity, name))
    return updated


def _touches_sensitivity_inputs(patch: Dict[str, Any]) -> bool:
    sensitivity = patch.get("sensitivity")
    return isinstance(sensitivity, dict) and ("value_before" in sensitivity or "value_after" in sensitivity)


def _recalculate(entity) -> bool:
    """Apply theoretical / measured to the coefficient; untouched when not computable"""
    coefficient = calculate_coefficient(entity.sensitivity.value_before, entity.sensitivity.value_after)
    if coefficient is None:
        return False
    entity.sensitivity.coefficient = coefficient
    return True


class EntityTree:
    """Shared shell operations; see FixedEntityTree / PortableEntityTree"""

    variant: ReportVariant
    repeated_name = "item"
    _root_collections = ("photos",)

    def __init__(self, report: Intervention, allocator: Optional[IdentityAllocator] = None):
        self.report = report
        self.allocator = allocator or IdentityAllocator()

    @classmethod
    def new(cls, variant: ReportVariant, allocator: Optional[IdentityAllocator] = None) -> "EntityTree":
        """Empty report with one default unit / portable detector"""
        tree_class = FixedEntityTree if variant == ReportVariant.FIXED else PortableEntityTree
        allocator = allocator or IdentityAllocator()
        report_class = FixedReport if variant == ReportVariant.FIXED else PortableReport
        tree = tree_class(report_class(id=allocator.allocate()), allocator)
        tree.add_repeated()
        return tree

    @classmethod
    def from_report(cls, report: Intervention, allocator: Optional[IdentityAllocator] = None) -> "EntityTree":
        tree_class = FixedEntityTree if report.variant == ReportVariant.FIXED else PortableEntityTree
        return tree_class(report, allocator)

    def _new_id(self) -> str:
        return self.allocator.allocate()

    # -------------------------------------------------------------------------
    # Intervention shell
    # -------------------------------------------------------------------------

    def update_intervention(self, patch: Dict[str, Any]):
        protected = set(self._root_collections) | {"variant", "client_id", "site_id"}
        self.report = _apply_patch(self.report, patch, protected)

    def select_client(self, client_id: Optional[int]):
        """Sites are scoped to the client: changing client clears the site"""
        if client_id != self.report.client_id:
            self.report.site_id = None
        self.report.client_id = client_id

    def select_site(self, site_id: Optional[int]):
        self.report.site_id = site_id

    def add_photo(self, filename: str, content: bytes, category: str = "conclusion") -> int:
        self.report.photos.append(Photo(id=self._new_id(), filename=filename, content=content, category=category))
        return len(self.report.photos) - 1

    def remove_photo(self, index: int):
        _check_index(self.report.photos, index, "photo")
        del self.report.photos[index]

    # -------------------------------------------------------------------------
    # Repeated top-level collection (what the wizard browses one at a time)
    # -------------------------------------------------------------------------

    @property
    def repeated_items(self) -> list:
        raise NotImplementedError

    @property
    def repeated_count(self) -> int:
        return len(self.repeated_items)

    def add_repeated(self) -> int:
        raise NotImplementedError

    def remove_repeated(self, index: int):
        raise NotImplementedError

    def _remove_mandatory(self, items: list, index: int):
        _check_index(items, index, self.repeated_name)
        if len(items) == 1:
            raise MinimumCardinalityViolation(self.repeated_name)
        del items[index]

    # -------------------------------------------------------------------------
    # Identity promotion
    # -------------------------------------------------------------------------

    def children_of(self, entity) -> List[BaseModel]:
        if isinstance(entity, FixedReport):
            return list(entity.units)
        if isinstance(entity, PortableReport):
            return list(entity.portable_detectors)
        if isinstance(entity, Unit):
            return list(entity.gas_detectors) + list(entity.flame_detectors)
        if isinstance(entity, GasDetector):
            return list(entity.thresholds)
        if isinstance(entity, PortableDetector):
            return list(entity.gases)
        return []

    def promote_identity(self, entity, store_id: EntityId):
        """Replace an entity's id with the store id and repoint its children"""
        old_id = entity.id
        entity.id = store_id
        for child in self.children_of(entity):
            child.parent_id = store_id
        if old_id != store_id:
            logger.debug(f"Promoted {type(entity).__name__} {old_id} -> {store_id}")

    def to_dict(self) -> dict:
        return self.report.model_dump(mode="json")


class FixedEntityTree(EntityTree):
    variant = ReportVariant.FIXED
    repeated_name = "unit"
    _root_collections = ("photos", "units")

    @property
    def repeated_items(self) -> List[Unit]:
        return self.report.units

    def add_repeated(self) -> int:
        return self.add_unit()

    def remove_repeated(self, index: int):
        self.remove_unit(index)

    # Units ------------------------------------------------------------------

    def add_unit(self, kind: UnitKind = UnitKind.CENTRALE) -> int:
        self.report.units.append(Unit(id=self._new_id(), parent_id=self.report.id, kind=kind))
        return len(self.report.units) - 1

    def remove_unit(self, index: int):
        self._remove_mandatory(self.report.units, index)

    def update_unit(self, index: int, patch: Dict[str, Any]):
        unit = _check_index(self.report.units, index, "unit")
        self.report.units[index] = _apply_patch(unit, patch, ("gas_detectors", "flame_detectors"))

    def unit(self, index: int) -> Unit:
        return _check_index(self.report.units, index, "unit")

    # Backup power -----------------------------------------------------------

    def set_backup_power(self, unit_index: int, patch: Optional[Dict[str, Any]] = None):
        """Attach (or patch) the unit's backup power record"""
        unit = self.unit(unit_index)
        current = unit.backup_power or BackupPower()
        unit.backup_power = _apply_patch(current, patch or {})

    def clear_backup_power(self, unit_index: int):
        self.unit(unit_index).backup_power = None

    # Gas detectors ----------------------------------------------------------

    def add_gas_detector(self, unit_index: int) -> int:
        unit = self.unit(unit_index)
        unit.gas_detectors.append(GasDetector(id=self._new_id(), parent_id=unit.id))
        return len(unit.gas_detectors) - 1

    def remove_gas_detector(self, unit_index: int, detector_index: int):
        unit = self.unit(unit_index)
        _check_index(unit.gas_detectors, detector_index, "gas detector")
        del unit.gas_detectors[detector_index]

    def gas_detector(self, unit_index: int, detector_index: int) -> GasDetector:
        return _check_index(self.unit(unit_index).gas_detectors, detector_index, "gas detector")

    def update_gas_detector(self, unit_index: int, detector_index: int, patch: Dict[str, Any]):
        unit = self.unit(unit_index)
        detector = _check_index(unit.gas_detectors, detector_index, "gas detector")
        updated = _apply_patch(detector, patch, ("thresholds",))
        if _touches_sensitivity_inputs(patch):
            _recalculate(updated)
        unit.gas_detectors[detector_index] = updated

    def recalculate_coefficient(self, unit_index: int, detector_index: int) -> bool:
        return _recalculate(self.gas_detector(unit_index, detector_index))

    # Thresholds -------------------------------------------------------------

    def add_threshold(self, unit_index: int, detector_index: int) -> int:
        detector = self.gas_detector(unit_index, detector_index)
        detector.thresholds.append(AlarmThreshold(
            id=self._new_id(),
            parent_id=detector.id,
            name=f"Seuil {len(detector.thresholds) + 1}",
        ))
        return len(detector.thresholds) - 1

    def remove_threshold(self, unit_index: int, detector_index: int, threshold_index: int):
        detector = self.gas_detector(unit_index, detector_index)
        _check_index(detector.thresholds, threshold_index, "threshold")
        del detector.thresholds[threshold_index]

    def update_threshold(self, unit_index: int, detector_index: int, threshold_index: int, patch: Dict[str, Any]):
        detector = self.gas_detector(unit_index, detector_index)
        threshold = _check_index(detector.thresholds, threshold_index, "threshold")
        detector.thresholds[threshold_index] = _apply_patch(threshold, patch)

    # Flame detectors --------------------------------------------------------

    def add_flame_detector(self, unit_index: int) -> int:
        unit = self.unit(unit_index)
        unit.flame_detectors.append(FlameDetector(id=self._new_id(), parent_id=unit.id))
        return len(unit.flame_detectors) - 1

    def remove_flame_detector(self, unit_index: int, detector_index: int):
        unit = self.unit(unit_index)
        _check_index(unit.flame_detectors, detector_index, "flame detector")
        del unit.flame_detectors[detector_index]

    def update_flame_detector(self, unit_index: int, detector_index: int, patch: Dict[str, Any]):
        unit = self.unit(unit_index)
        detector = _check_index(unit.flame_detectors, detector_index, "flame detector")
        unit.flame_detectors[detector_index] = _apply_patch(detector, patch)


class PortableEntityTree(EntityTree):
    variant = ReportVariant.PORTABLE
    repeated_name = "portable detector"
    _root_collections = ("photos", "portable_detectors")

    @property
    def repeated_items(self) -> List[PortableDetector]:
        return self.report.portable_detectors

    def add_repeated(self) -> int:
        return self.add_portable_detector()

    def remove_repeated(self, index: int):
        self.remove_portable_detector(index)

    # Portable detectors -----------------------------------------------------

    def add_portable_detector(self) -> int:
        self.report.portable_detectors.append(PortableDetector(id=self._new_id(), parent_id=self.report.id))
        return len(self.report.portable_detectors) - 1

    def remove_portable_detector(self, index: int):
        self._remove_mandatory(self.report.portable_detectors, index)

    def portable_detector(self, index: int) -> PortableDetector:
        return _check_index(self.report.portable_detectors, index, "portable detector")

    def update_portable_detector(self, index: int, patch: Dict[str, Any]):
        detector = self.portable_detector(index)
        self.report.portable_detectors[index] = _apply_patch(detector, patch, ("gases",))

    # Gases ------------------------------------------------------------------

    def add_gas(self, detector_index: int) -> int:
        detector = self.portable_detector(detector_index)
        detector.gases.append(PortableGas(id=self._new_id(), parent_id=detector.id))
        return len(detector.gases) - 1

    def remove_gas(self, detector_index: int, gas_index: int):
        detector = self.portable_detector(detector_index)
        _check_index(detector.gases, gas_index, "gas")
        del detector.gases[gas_index]

    def update_gas(self, detector_index: int, gas_index: int, patch: Dict[str, Any]):
        detector = self.portable_detector(detector_index)
        gas = _check_index(detector.gases, gas_index, "gas")
        updated = _apply_patch(gas, patch)
        if _touches_sensitivity_inputs(patch):
            _recalculate(updated)
        detector.gases[gas_index] = updated

    def recalculate_coefficient(self, detector_index: int, gas_index: int) -> bool:
        detector = self.portable_detector(detector_index)
        return _recalculate(_check_index(detector.gases, gas_index, "gas"))
