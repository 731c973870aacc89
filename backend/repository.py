"""
Report repository - the store the reconciler writes to.

The store has no nested transactional writes: every call below is its own
independent transaction. Deleting a parent removes its subtree (cascade).

Operations:
- insert(kind, fields) -> {"id": ...}
- update(kind, id, fields)
- delete_where(kind, parent_ref) - cascading delete of the matching subtrees
- find_one(kind, id) -> record | None
- find_where(kind, parent_ref) -> [record] ordered by position, then id
- upload_blob(bytes, path_hint) -> {"path": ...}
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging
import os

from database import SessionLocal
from models import (
    Intervention, Unit, BackupPower, UnitObservation, GasDetector, AlarmThreshold,
    FlameDetector, PortableDetector, PortableGas, InterventionPhoto,
)

logger = logging.getLogger(__name__)

PHOTO_STORAGE_DIR = os.getenv("GASREPORT_PHOTO_DIR", "./data/photos")


class EntityKind(str, Enum):
    INTERVENTION = "interventions"
    UNIT = "units"
    BACKUP_POWER = "backup_power"
    UNIT_OBSERVATION = "unit_observations"
    GAS_DETECTOR = "gas_detectors"
    ALARM_THRESHOLD = "alarm_thresholds"
    FLAME_DETECTOR = "flame_detectors"
    PORTABLE_DETECTOR = "portable_detectors"
    PORTABLE_GAS = "portable_gases"
    PHOTO = "intervention_photos"


MODEL_BY_KIND = {
    EntityKind.INTERVENTION: Intervention,
    EntityKind.UNIT: Unit,
    EntityKind.BACKUP_POWER: BackupPower,
    EntityKind.UNIT_OBSERVATION: UnitObservation,
    EntityKind.GAS_DETECTOR: GasDetector,
    EntityKind.ALARM_THRESHOLD: AlarmThreshold,
    EntityKind.FLAME_DETECTOR: FlameDetector,
    EntityKind.PORTABLE_DETECTOR: PortableDetector,
    EntityKind.PORTABLE_GAS: PortableGas,
    EntityKind.PHOTO: InterventionPhoto,
}


class Repository(ABC):
    """Abstract store. Calls are awaited one after another, never fanned out."""

    @abstractmethod
    async def insert(self, kind: EntityKind, fields: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update(self, kind: EntityKind, entity_id, fields: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete_where(self, kind: EntityKind, parent_ref: Dict[str, Any]) -> int:
        ...

    @abstractmethod
    async def find_one(self, kind: EntityKind, entity_id) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def find_where(self, kind: EntityKind, parent_ref: Dict[str, Any]) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def upload_blob(self, data: bytes, path_hint: str) -> Dict[str, str]:
        ...


def _row_to_dict(row) -> Dict[str, Any]:
    return {column.name: getattr(row, column.name) for column in row.__table__.columns}


class SqlAlchemyRepository(Repository):
    """
    Repository over the SQLAlchemy models, one session + commit per call.
    Blobs go to a local directory (GASREPORT_PHOTO_DIR).
    """

    def __init__(self, session_factory=SessionLocal, blob_root: str = PHOTO_STORAGE_DIR):
        self.session_factory = session_factory
        self.blob_root = Path(blob_root)

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _model(kind: EntityKind):
        return MODEL_BY_KIND[EntityKind(kind)]

    @staticmethod
    def _check_columns(model, names):
        columns = set(model.__table__.columns.keys())
        unknown = [name for name in names if name not in columns]
        if unknown:
            raise ValueError(f"{model.__tablename__} has no column(s): {', '.join(unknown)}")

    async def insert(self, kind: EntityKind, fields: Dict[str, Any]) -> Dict[str, Any]:
        model = self._model(kind)
        self._check_columns(model, fields)
        with self._session() as db:
            row = model(**fields)
            db.add(row)
            db.flush()
            new_id = row.id
        logger.debug(f"INSERT {model.__tablename__} id={new_id}")
        return {"id": new_id}

    async def update(self, kind: EntityKind, entity_id, fields: Dict[str, Any]) -> None:
        model = self._model(kind)
        self._check_columns(model, fields)
        with self._session() as db:
            row = db.get(model, entity_id)
            if row is None:
                raise LookupError(f"{model.__tablename__} {entity_id} not found")
            for field, value in fields.items():
                setattr(row, field, value)
            if hasattr(row, "updated_at"):
                row.updated_at = datetime.now(timezone.utc)
        logger.debug(f"UPDATE {model.__tablename__} id={entity_id}")

    async def delete_where(self, kind: EntityKind, parent_ref: Dict[str, Any]) -> int:
        model = self._model(kind)
        self._check_columns(model, parent_ref)
        with self._session() as db:
            # ORM delete (not bulk) so relationship cascades apply on every backend
            rows = db.query(model).filter_by(**parent_ref).all()
            for row in rows:
                db.delete(row)
            count = len(rows)
        logger.debug(f"DELETE {model.__tablename__} where {parent_ref}: {count} row(s)")
        return count

    async def find_one(self, kind: EntityKind, entity_id) -> Optional[Dict[str, Any]]:
        model = self._model(kind)
        with self._session() as db:
            row = db.get(model, entity_id)
            return _row_to_dict(row) if row is not None else None

    async def find_where(self, kind: EntityKind, parent_ref: Dict[str, Any]) -> List[Dict[str, Any]]:
        model = self._model(kind)
        self._check_columns(model, parent_ref)
        with self._session() as db:
            query = db.query(model).filter_by(**parent_ref)
            if "position" in model.__table__.columns:
                query = query.order_by(model.position, model.id)
            else:
                query = query.order_by(model.id)
            return [_row_to_dict(row) for row in query.all()]

    async def upload_blob(self, data: bytes, path_hint: str) -> Dict[str, str]:
        root = self.blob_root.resolve()
        target = (root / path_hint).resolve()
        if root not in target.parents:
            raise ValueError(f"Blob path escapes storage root: {path_hint}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.debug(f"Stored blob {path_hint} ({len(data)} bytes)")
        return {"path": path_hint}
