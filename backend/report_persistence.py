"""
Report persistence - save an EntityTree to the repository and load it back.

Save algorithm (both variants):
1. Root write: insert the intervention (CREATE_NEW / DUPLICATE_AS_NEW) or
   update it in place (UPDATE_IN_PLACE).
2. UPDATE_IN_PLACE only: replace_children() deletes every persisted
   unit / portable detector of the intervention (cascade removes the rest).
3. Ordered child inserts from the write plan: a parent is always inserted, and
   its store id promoted into the tree, before any child that references it.
4. Photos: upload pending blobs, then insert photo rows (old rows deleted first
   on UPDATE_IN_PLACE). A failed upload skips that photo; nothing else does.

Any failed write stops the save. Earlier writes are NOT rolled back: a retried
UPDATE_IN_PLACE deletes and rewrites the partial children. On the insert paths
the tree gets its pre-save ids back, so a retry never targets the partial copy.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging
import re
import time

from pydantic import BaseModel

from schemas_reports import (
    ReportVariant, SaveMode, SaveOutcome, InterventionTypeTag, InterlockState, UnitKind,
    FixedReport, PortableReport, Unit, BackupPower, GasDetector, FlameDetector, AlarmThreshold,
    PortableDetector, PortableGas, Photo, ZeroCalibration, SensitivityCalibration,
    DEFAULT_ZERO_GAS, DEFAULT_CONNECTION, DEFAULT_CONDITION, DEFAULT_STATUS,
)
from report_tree import EntityTree
from report_identity import IdentityAllocator, is_local_id
from report_helpers import parse_decimal, format_decimal, parse_date, format_date
from report_errors import (
    RepositoryWriteFailure, RepositoryReadFailure, BlobUploadFailure, WizardStateError,
)
from repository import Repository, EntityKind

logger = logging.getLogger(__name__)

# Deleting these per intervention removes the whole equipment subtree
CHILD_ROOT_KINDS = {
    ReportVariant.FIXED: [EntityKind.UNIT],
    ReportVariant.PORTABLE: [EntityKind.PORTABLE_DETECTOR],
}

# Status written on every save
INTERVENTION_STATUS = "planifiee"


# =============================================================================
# TREE -> STORE ROWS
# =============================================================================

def _text(value: str) -> Optional[str]:
    """Blank display strings are stored as NULL"""
    if value is None:
        return None
    value = str(value)
    return value if value.strip() else None


def intervention_row(report) -> Dict[str, Any]:
    codes = [InterventionTypeTag(tag).code for tag in report.intervention_types]
    return {
        "report_type": report.variant.value,
        "intervention_date": parse_date(report.intervention_date),
        "start_time": _text(report.start_time),
        "end_time": _text(report.end_time),
        "technician": _text(report.technician),
        "intervention_type": codes[0] if codes else None,
        "intervention_types": codes,
        "client_id": report.client_id,
        "site_id": report.site_id,
        "room": _text(report.room),
        "site_contact": _text(report.site_contact),
        "contact_phone": _text(report.contact_phone),
        "report_email": _text(report.report_email),
        "general_observations": _text(report.general_observations),
        "conclusion": _text(report.conclusion),
        "status": INTERVENTION_STATUS,
    }


def _zero_columns(zero: ZeroCalibration) -> Dict[str, Any]:
    return {
        "zero_gas": _text(zero.gas),
        "zero_value_before": parse_decimal(zero.value_before),
        "zero_value_after": parse_decimal(zero.value_after),
        "zero_status": _text(zero.status),
    }


def _sensitivity_columns(sensitivity: SensitivityCalibration) -> Dict[str, Any]:
    return {
        "sensitivity_gas": _text(sensitivity.gas),
        "sensitivity_value_before": parse_decimal(sensitivity.value_before),
        "sensitivity_value_after": parse_decimal(sensitivity.value_after),
        "calibration_unit": _text(sensitivity.unit),
        "coefficient": parse_decimal(sensitivity.coefficient),
        "sensitivity_status": _text(sensitivity.status),
    }


def unit_row(unit: Unit, position: int) -> Dict[str, Any]:
    return {
        "position": position,
        "kind": UnitKind(unit.kind).value,
        "make": unit.make,
        "model": unit.model,
        "serial_number": unit.serial_number,
        "firmware": _text(unit.firmware),
        "condition": _text(unit.condition),
    }


def backup_power_row(backup: BackupPower) -> Dict[str, Any]:
    return {
        "present": True,
        "model": _text(backup.model),
        "status": _text(backup.status),
        "inverter_backed": backup.inverter_backed,
        "replacement_date": parse_date(backup.replacement_date),
        "next_due_date": parse_date(backup.next_due_date),
    }


def observation_row(unit: Unit) -> Dict[str, Any]:
    return {
        "observations": _text(unit.observations),
        "work_performed": _text(unit.work_performed),
        "anomalies": _text(unit.anomalies),
        "recommendations": _text(unit.recommendations),
        "parts_replaced": _text(unit.parts_replaced),
    }


def gas_detector_row(detector: GasDetector, position: int) -> Dict[str, Any]:
    row = {
        "position": position,
        "line": _text(detector.line),
        "make": detector.make,
        "model": _text(detector.model),
        "serial_number": _text(detector.serial_number),
        "gas_type": _text(detector.gas_type),
        "connection_type": _text(detector.connection_type),
        "connection_other": _text(detector.connection_other),
        "measurement_range": _text(detector.measurement_range),
        "response_time": _text(detector.response_time),
        "operational": detector.operational,
        "untested": detector.untested,
        "replacement_date": parse_date(detector.replacement_date),
        "next_replacement_date": parse_date(detector.next_replacement_date),
    }
    row.update(_zero_columns(detector.zero))
    row.update(_sensitivity_columns(detector.sensitivity))
    return row


def threshold_level(threshold: AlarmThreshold, position: int) -> int:
    """Level from the name ("Seuil 2" -> 2), else the 1-based position"""
    match = re.search(r"\d+", threshold.name or "")
    return int(match.group()) if match else position + 1


def threshold_row(threshold: AlarmThreshold, position: int) -> Dict[str, Any]:
    return {
        "position": position,
        "level": threshold_level(threshold, position),
        "name": _text(threshold.name),
        "value": parse_decimal(threshold.value),
        "unit": _text(threshold.unit),
        "interlock_description": _text(threshold.interlock_description),
        "interlock_state": InterlockState(threshold.interlock_state).value,
        "operational": threshold.operational,
        "supervised": threshold.supervised,
        "untested": threshold.untested,
    }


def flame_detector_row(detector: FlameDetector, position: int) -> Dict[str, Any]:
    return {
        "position": position,
        "line": _text(detector.line),
        "make": detector.make,
        "model": _text(detector.model),
        "serial_number": _text(detector.serial_number),
        "connection_type": _text(detector.connection_type),
        "connection_other": _text(detector.connection_other),
        "measurement_range": _text(detector.measurement_range),
        "test_distance": _text(detector.test_distance),
        "response_time": _text(detector.response_time),
        "test_status": _text(detector.test_status),
        "interlock_description": _text(detector.interlock_description),
        "interlock_state": InterlockState(detector.interlock_state).value,
        "operational": detector.operational,
        "untested": detector.untested,
    }


def portable_detector_row(detector: PortableDetector, position: int, site_id: Optional[int]) -> Dict[str, Any]:
    return {
        "position": position,
        "site_id": site_id,
        "make": detector.make,
        "model": detector.model,
        "serial_number": detector.serial_number,
        "condition": _text(detector.condition),
        "audible_alarm": detector.audible_alarm,
        "visual_alarm": detector.visual_alarm,
        "vibrating_alarm": detector.vibrating_alarm,
        "parts_replaced": _text(detector.parts_replaced),
    }


def portable_gas_row(gas: PortableGas, position: int) -> Dict[str, Any]:
    row = {
        "position": position,
        "gas_type": _text(gas.gas_type),
        "measurement_range": _text(gas.measurement_range),
        "replacement_date": parse_date(gas.replacement_date),
        "next_replacement_date": parse_date(gas.next_replacement_date),
        "threshold_1": _text(gas.threshold_1),
        "threshold_2": _text(gas.threshold_2),
        "threshold_3": _text(gas.threshold_3),
        "vme": _text(gas.vme),
        "vle": _text(gas.vle),
    }
    row.update(_zero_columns(gas.zero))
    row.update(_sensitivity_columns(gas.sensitivity))
    return row


# =============================================================================
# WRITE PLAN
# =============================================================================

@dataclass
class PlannedWrite:
    """
    One insert. `parents` maps a foreign-key column to the entity whose id
    fills it; ids are read when the step runs, after the parent was promoted.
    """
    kind: EntityKind
    fields: Dict[str, Any]
    description: str
    entity: Optional[BaseModel] = None
    parents: Dict[str, BaseModel] = field(default_factory=dict)


def _fixed_plan(report: FixedReport) -> List[PlannedWrite]:
    plan = []
    for unit_position, unit in enumerate(report.units):
        label = f"unit {unit_position + 1}"
        plan.append(PlannedWrite(
            EntityKind.UNIT, unit_row(unit, unit_position), f"inserting {label}",
            entity=unit, parents={"intervention_id": report},
        ))

        if unit.backup_power is not None:
            plan.append(PlannedWrite(
                EntityKind.BACKUP_POWER, backup_power_row(unit.backup_power),
                f"inserting backup power of {label}", parents={"unit_id": unit},
            ))

        if unit.has_observations():
            plan.append(PlannedWrite(
                EntityKind.UNIT_OBSERVATION, observation_row(unit),
                f"inserting observations of {label}",
                parents={"intervention_id": report, "unit_id": unit},
            ))

        position = 0
        for detector in unit.gas_detectors:
            if not detector.make.strip():
                logger.debug(f"Skipping gas detector without make on {label}")
                continue
            plan.append(PlannedWrite(
                EntityKind.GAS_DETECTOR, gas_detector_row(detector, position),
                f"inserting gas detector {position + 1} of {label}",
                entity=detector, parents={"unit_id": unit, "intervention_id": report},
            ))
            threshold_position = 0
            for threshold in detector.thresholds:
                if not threshold.value.strip():
                    logger.debug(f"Skipping blank threshold '{threshold.name}' on {label}")
                    continue
                plan.append(PlannedWrite(
                    EntityKind.ALARM_THRESHOLD, threshold_row(threshold, threshold_position),
                    f"inserting threshold {threshold_position + 1} of gas detector {position + 1} of {label}",
                    entity=threshold, parents={"gas_detector_id": detector},
                ))
                threshold_position += 1
            position += 1

        position = 0
        for detector in unit.flame_detectors:
            if not detector.make.strip():
                logger.debug(f"Skipping flame detector without make on {label}")
                continue
            plan.append(PlannedWrite(
                EntityKind.FLAME_DETECTOR, flame_detector_row(detector, position),
                f"inserting flame detector {position + 1} of {label}",
                entity=detector, parents={"unit_id": unit, "intervention_id": report},
            ))
            position += 1
    return plan


def _portable_plan(report: PortableReport) -> List[PlannedWrite]:
    plan = []
    for detector_position, detector in enumerate(report.portable_detectors):
        label = f"portable detector {detector_position + 1}"
        plan.append(PlannedWrite(
            EntityKind.PORTABLE_DETECTOR,
            portable_detector_row(detector, detector_position, report.site_id),
            f"inserting {label}", entity=detector, parents={"intervention_id": report},
        ))
        for gas_position, gas in enumerate(detector.gases):
            plan.append(PlannedWrite(
                EntityKind.PORTABLE_GAS, portable_gas_row(gas, gas_position),
                f"inserting gas {gas_position + 1} of {label}",
                entity=gas, parents={"portable_detector_id": detector, "intervention_id": report},
            ))
    return plan


def build_write_plan(tree: EntityTree) -> List[PlannedWrite]:
    """Flatten the equipment subtree into parent-before-child inserts"""
    if tree.variant == ReportVariant.FIXED:
        return _fixed_plan(tree.report)
    return _portable_plan(tree.report)


# =============================================================================
# RECONCILER
# =============================================================================

class PersistenceReconciler:
    """Runs the save algorithm against a Repository, one awaited call at a time"""

    def __init__(self, repository: Repository):
        self.repository = repository

    async def _write(self, description: str, call):
        try:
            return await call
        except Exception as e:
            logger.error(f"Save aborted while {description}: {e}")
            raise RepositoryWriteFailure(description, e) from e

    async def save(self, tree: EntityTree, mode: SaveMode) -> SaveOutcome:
        mode = SaveMode(mode)
        report = tree.report
        row = intervention_row(report)
        logger.info(f"Saving {tree.variant.value} report {report.id} ({mode.value})")

        if mode == SaveMode.UPDATE_IN_PLACE:
            if is_local_id(report.id):
                raise WizardStateError("This report has never been saved; it cannot be updated in place")
            root_id = report.id
            await self._write(
                f"updating intervention {root_id}",
                self.repository.update(EntityKind.INTERVENTION, root_id, row),
            )
            plan = build_write_plan(tree)
            await self.replace_children(tree, root_id, plan)
            skipped = await self.save_photos(tree, root_id, replace=True)
        else:
            # Ids and photo paths of the tree as it was before this save
            before = report.model_copy(deep=True)
            try:
                result = await self._write("inserting intervention", self.repository.insert(EntityKind.INTERVENTION, row))
                root_id = result["id"]
                tree.promote_identity(report, root_id)
                plan = build_write_plan(tree)
                await self.execute_plan(tree, plan)
                skipped = await self.save_photos(tree, root_id)
            except RepositoryWriteFailure:
                tree.report = before
                logger.warning(f"Restored identities of report {before.id} after failed {mode.value}")
                raise

        logger.info(f"Saved {tree.variant.value} report {root_id} ({mode.value}, {len(plan)} child rows)")
        return SaveOutcome(intervention_id=root_id, mode=mode, skipped_photos=skipped)

    async def replace_children(self, tree: EntityTree, parent_id, plan: List[PlannedWrite]):
        """
        Full replace of the equipment subtree: delete everything persisted under
        the intervention, then insert the plan. Not a diff, and not atomic.
        """
        for kind in CHILD_ROOT_KINDS[tree.variant]:
            await self._write(
                f"clearing {kind.value} of intervention {parent_id}",
                self.repository.delete_where(kind, {"intervention_id": parent_id}),
            )
        await self.execute_plan(tree, plan)

    async def execute_plan(self, tree: EntityTree, plan: List[PlannedWrite]):
        for step in plan:
            fields = dict(step.fields)
            for column, parent in step.parents.items():
                if is_local_id(parent.id):
                    raise RepositoryWriteFailure(
                        step.description, RuntimeError(f"{column} refers to an entity that is not persisted yet")
                    )
                fields[column] = parent.id
            result = await self._write(step.description, self.repository.insert(step.kind, fields))
            if step.entity is not None:
                tree.promote_identity(step.entity, result["id"])

    async def save_photos(self, tree: EntityTree, root_id, replace: bool = False) -> List[str]:
        """Upload pending photos and (re)write photo rows. Returns skipped path hints."""
        if replace:
            await self._write(
                f"clearing photos of intervention {root_id}",
                self.repository.delete_where(EntityKind.PHOTO, {"intervention_id": root_id}),
            )

        skipped = []
        position = 0
        for index, photo in enumerate(tree.report.photos):
            if photo.path is None:
                if photo.content is None:
                    continue
                suffix = Path(photo.filename).suffix or ".jpg"
                path_hint = f"{root_id}/{int(time.time() * 1000)}-{index}{suffix}"
                try:
                    uploaded = await self.repository.upload_blob(photo.content, path_hint)
                except Exception as e:
                    failure = BlobUploadFailure(path_hint, e)
                    logger.warning(failure.message)
                    skipped.append(path_hint)
                    continue
                photo.path = uploaded["path"]
                photo.content = None

            result = await self._write(
                f"inserting photo {position + 1}",
                self.repository.insert(EntityKind.PHOTO, {
                    "intervention_id": root_id,
                    "path": photo.path,
                    "category": photo.category,
                    "position": position,
                }),
            )
            tree.promote_identity(photo, result["id"])
            position += 1
        return skipped


# =============================================================================
# HYDRATION (store -> tree)
# =============================================================================

def _s(value) -> str:
    return "" if value is None else str(value)


def _flag(value, default: bool) -> bool:
    return default if value is None else bool(value)


def _interlock(value) -> InterlockState:
    try:
        return InterlockState(value)
    except ValueError:
        return InterlockState.OPERATIONAL


def _zero_from_row(row: dict, default_gas: str) -> ZeroCalibration:
    return ZeroCalibration(
        gas=row.get("zero_gas") or default_gas,
        value_before=format_decimal(row.get("zero_value_before")),
        value_after=format_decimal(row.get("zero_value_after")),
        status=row.get("zero_status") or DEFAULT_STATUS,
    )


def _sensitivity_from_row(row: dict, default_unit: str) -> SensitivityCalibration:
    return SensitivityCalibration(
        gas=_s(row.get("sensitivity_gas")),
        value_before=format_decimal(row.get("sensitivity_value_before")),
        value_after=format_decimal(row.get("sensitivity_value_after")),
        unit=row.get("calibration_unit") or default_unit,
        coefficient=format_decimal(row.get("coefficient")),
        status=row.get("sensitivity_status") or DEFAULT_STATUS,
    )


def _intervention_types(row: dict) -> List[InterventionTypeTag]:
    codes = row.get("intervention_types") or ([row["intervention_type"]] if row.get("intervention_type") else [])
    tags = []
    for code in codes:
        tag = InterventionTypeTag.from_code(code)
        if tag is None:
            logger.warning(f"Unknown intervention type code '{code}' on intervention {row.get('id')}")
            continue
        tags.append(tag)
    return tags


def _shell_fields(row: dict) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "intervention_date": format_date(row.get("intervention_date")),
        "start_time": _s(row.get("start_time")),
        "end_time": _s(row.get("end_time")),
        "technician": _s(row.get("technician")),
        "intervention_types": _intervention_types(row),
        "client_id": row.get("client_id"),
        "site_id": row.get("site_id"),
        "room": _s(row.get("room")),
        "site_contact": _s(row.get("site_contact")),
        "contact_phone": _s(row.get("contact_phone")),
        "report_email": _s(row.get("report_email")),
        "general_observations": _s(row.get("general_observations")),
        "conclusion": _s(row.get("conclusion")),
    }


async def _load_units(repository: Repository, root_id) -> List[Unit]:
    units = []
    for row in await repository.find_where(EntityKind.UNIT, {"intervention_id": root_id}):
        backup_rows = await repository.find_where(EntityKind.BACKUP_POWER, {"unit_id": row["id"]})
        observation_rows = await repository.find_where(EntityKind.UNIT_OBSERVATION, {"unit_id": row["id"]})
        observation = observation_rows[0] if observation_rows else {}

        gas_detectors = []
        for detector in await repository.find_where(EntityKind.GAS_DETECTOR, {"unit_id": row["id"]}):
            thresholds = [
                AlarmThreshold(
                    id=threshold["id"],
                    parent_id=detector["id"],
                    name=threshold.get("name") or f"Seuil {threshold.get('level') or 1}",
                    value=format_decimal(threshold.get("value")),
                    unit=threshold.get("unit") or "ppm",
                    interlock_description=_s(threshold.get("interlock_description")),
                    interlock_state=_interlock(threshold.get("interlock_state")),
                    operational=_flag(threshold.get("operational"), True),
                    supervised=_flag(threshold.get("supervised"), False),
                    untested=_flag(threshold.get("untested"), False),
                )
                for threshold in await repository.find_where(EntityKind.ALARM_THRESHOLD, {"gas_detector_id": detector["id"]})
            ]
            gas_detectors.append(GasDetector(
                id=detector["id"],
                parent_id=row["id"],
                line=_s(detector.get("line")),
                make=_s(detector.get("make")),
                model=_s(detector.get("model")),
                serial_number=_s(detector.get("serial_number")),
                gas_type=_s(detector.get("gas_type")),
                connection_type=detector.get("connection_type") or DEFAULT_CONNECTION,
                connection_other=_s(detector.get("connection_other")),
                measurement_range=_s(detector.get("measurement_range")),
                response_time=_s(detector.get("response_time")),
                zero=_zero_from_row(detector, DEFAULT_ZERO_GAS),
                sensitivity=_sensitivity_from_row(detector, "ppm"),
                operational=_flag(detector.get("operational"), True),
                untested=_flag(detector.get("untested"), False),
                replacement_date=format_date(detector.get("replacement_date")),
                next_replacement_date=format_date(detector.get("next_replacement_date")),
                thresholds=thresholds,
            ))

        flame_detectors = [
            FlameDetector(
                id=detector["id"],
                parent_id=row["id"],
                line=_s(detector.get("line")),
                make=_s(detector.get("make")),
                model=_s(detector.get("model")),
                serial_number=_s(detector.get("serial_number")),
                connection_type=detector.get("connection_type") or DEFAULT_CONNECTION,
                connection_other=_s(detector.get("connection_other")),
                measurement_range=_s(detector.get("measurement_range")),
                test_distance=_s(detector.get("test_distance")),
                response_time=_s(detector.get("response_time")),
                test_status=detector.get("test_status") or DEFAULT_STATUS,
                interlock_description=_s(detector.get("interlock_description")),
                interlock_state=_interlock(detector.get("interlock_state")),
                operational=_flag(detector.get("operational"), True),
                untested=_flag(detector.get("untested"), False),
            )
            for detector in await repository.find_where(EntityKind.FLAME_DETECTOR, {"unit_id": row["id"]})
        ]

        backup_power = None
        if backup_rows and backup_rows[0].get("present", True):
            backup = backup_rows[0]
            backup_power = BackupPower(
                model=_s(backup.get("model")),
                status=backup.get("status") or DEFAULT_CONDITION,
                inverter_backed=_flag(backup.get("inverter_backed"), False),
                replacement_date=format_date(backup.get("replacement_date")),
                next_due_date=format_date(backup.get("next_due_date")),
            )

        units.append(Unit(
            id=row["id"],
            parent_id=root_id,
            kind=row.get("kind") or UnitKind.CENTRALE,
            make=_s(row.get("make")),
            model=_s(row.get("model")),
            serial_number=_s(row.get("serial_number")),
            firmware=_s(row.get("firmware")),
            condition=row.get("condition") or DEFAULT_CONDITION,
            backup_power=backup_power,
            gas_detectors=gas_detectors,
            flame_detectors=flame_detectors,
            observations=_s(observation.get("observations")),
            work_performed=_s(observation.get("work_performed")),
            anomalies=_s(observation.get("anomalies")),
            recommendations=_s(observation.get("recommendations")),
            parts_replaced=_s(observation.get("parts_replaced")),
        ))
    return units


async def _load_portables(repository: Repository, root_id) -> List[PortableDetector]:
    detectors = []
    for row in await repository.find_where(EntityKind.PORTABLE_DETECTOR, {"intervention_id": root_id}):
        gases = [
            PortableGas(
                id=gas["id"],
                parent_id=row["id"],
                gas_type=_s(gas.get("gas_type")),
                measurement_range=_s(gas.get("measurement_range")),
                replacement_date=format_date(gas.get("replacement_date")),
                next_replacement_date=format_date(gas.get("next_replacement_date")),
                zero=_zero_from_row(gas, ""),
                sensitivity=_sensitivity_from_row(gas, "%LIE"),
                threshold_1=_s(gas.get("threshold_1")),
                threshold_2=_s(gas.get("threshold_2")),
                threshold_3=_s(gas.get("threshold_3")),
                vme=_s(gas.get("vme")),
                vle=_s(gas.get("vle")),
            )
            for gas in await repository.find_where(EntityKind.PORTABLE_GAS, {"portable_detector_id": row["id"]})
        ]
        detectors.append(PortableDetector(
            id=row["id"],
            parent_id=root_id,
            make=_s(row.get("make")),
            model=_s(row.get("model")),
            serial_number=_s(row.get("serial_number")),
            condition=row.get("condition") or DEFAULT_CONDITION,
            audible_alarm=_flag(row.get("audible_alarm"), False),
            visual_alarm=_flag(row.get("visual_alarm"), False),
            vibrating_alarm=_flag(row.get("vibrating_alarm"), False),
            parts_replaced=_s(row.get("parts_replaced")),
            gases=gases,
        ))
    return detectors


async def load_report(
    repository: Repository,
    variant: ReportVariant,
    intervention_id,
    allocator: Optional[IdentityAllocator] = None
) -> EntityTree:
    """Hydrate an EntityTree (with store ids) from a persisted intervention"""
    variant = ReportVariant(variant)
    try:
        root = await repository.find_one(EntityKind.INTERVENTION, intervention_id)
    except Exception as e:
        raise RepositoryReadFailure(intervention_id, e) from e

    if root is None:
        raise RepositoryReadFailure(intervention_id, reason="not found")
    stored_variant = root.get("report_type") or ReportVariant.FIXED.value
    if stored_variant != variant.value:
        raise RepositoryReadFailure(intervention_id, reason=f"it is a {stored_variant} report, not {variant.value}")

    try:
        shell = _shell_fields(root)
        photos = [
            Photo(id=row["id"], path=row["path"], category=row.get("category") or "conclusion")
            for row in await repository.find_where(EntityKind.PHOTO, {"intervention_id": root["id"]})
        ]
        if variant == ReportVariant.FIXED:
            report = FixedReport(**shell, photos=photos, units=await _load_units(repository, root["id"]))
        else:
            report = PortableReport(**shell, photos=photos, portable_detectors=await _load_portables(repository, root["id"]))
    except Exception as e:
        logger.error(f"Failed to load intervention {intervention_id}: {e}")
        raise RepositoryReadFailure(intervention_id, e) from e

    tree = EntityTree.from_report(report, allocator)
    if tree.repeated_count == 0:
        tree.add_repeated()
    logger.info(f"Loaded {variant.value} report {intervention_id} ({tree.repeated_count} {tree.repeated_name}(s))")
    return tree
