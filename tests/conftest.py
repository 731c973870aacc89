"""
Pytest configuration and shared fixtures for the GasReport test suite.
"""
import os
import tempfile

# Must be set before database.py is imported anywhere
os.environ["GASREPORT_DATABASE_URL"] = "sqlite://"
os.environ.setdefault("GASREPORT_PHOTO_DIR", tempfile.mkdtemp())

import pytest
from sqlalchemy.orm import sessionmaker

from database import Base, make_engine
import models  # noqa: F401
from repository import Repository, SqlAlchemyRepository, EntityKind
from report_tree import EntityTree
from schemas_reports import ReportVariant, InterventionTypeTag


# Child tables removed with their parent (mirrors the ORM cascades)
CASCADES = {
    EntityKind.INTERVENTION: [
        (EntityKind.UNIT, "intervention_id"),
        (EntityKind.PORTABLE_DETECTOR, "intervention_id"),
        (EntityKind.PHOTO, "intervention_id"),
    ],
    EntityKind.UNIT: [
        (EntityKind.BACKUP_POWER, "unit_id"),
        (EntityKind.UNIT_OBSERVATION, "unit_id"),
        (EntityKind.GAS_DETECTOR, "unit_id"),
        (EntityKind.FLAME_DETECTOR, "unit_id"),
    ],
    EntityKind.GAS_DETECTOR: [(EntityKind.ALARM_THRESHOLD, "gas_detector_id")],
    EntityKind.PORTABLE_DETECTOR: [(EntityKind.PORTABLE_GAS, "portable_detector_id")],
}


class RecordingRepository(Repository):
    """
    In-memory repository that records every call in order.
    fail_on(call) -> bool makes the matching call raise.
    """

    def __init__(self, fail_on=None, fail_uploads=False):
        self.calls = []
        self.rows = {kind: {} for kind in EntityKind}
        self.blobs = {}
        self.fail_on = fail_on
        self.fail_uploads = fail_uploads
        self._next_id = 0

    def _record(self, call):
        self.calls.append(call)
        if self.fail_on and self.fail_on(call):
            raise RuntimeError(f"simulated failure on {call[0]} {call[1]}")

    def inserts(self, kind=None):
        return [c for c in self.calls if c[0] == "insert" and (kind is None or c[1] == kind)]

    async def insert(self, kind, fields):
        self._record(("insert", EntityKind(kind), dict(fields)))
        self._next_id += 1
        self.rows[EntityKind(kind)][self._next_id] = {"id": self._next_id, **fields}
        return {"id": self._next_id}

    async def update(self, kind, entity_id, fields):
        self._record(("update", EntityKind(kind), entity_id, dict(fields)))
        row = self.rows[EntityKind(kind)].get(entity_id)
        if row is None:
            raise LookupError(f"{kind} {entity_id} not found")
        row.update(fields)

    def _delete(self, kind, row_id):
        self.rows[kind].pop(row_id, None)
        for child_kind, column in CASCADES.get(kind, []):
            for child_id in [i for i, r in self.rows[child_kind].items() if r.get(column) == row_id]:
                self._delete(child_kind, child_id)

    async def delete_where(self, kind, parent_ref):
        self._record(("delete_where", EntityKind(kind), dict(parent_ref)))
        kind = EntityKind(kind)
        matches = [i for i, r in self.rows[kind].items() if all(r.get(k) == v for k, v in parent_ref.items())]
        for row_id in matches:
            self._delete(kind, row_id)
        return len(matches)

    async def find_one(self, kind, entity_id):
        row = self.rows[EntityKind(kind)].get(entity_id)
        return dict(row) if row else None

    async def find_where(self, kind, parent_ref):
        rows = [
            dict(r) for r in self.rows[EntityKind(kind)].values()
            if all(r.get(k) == v for k, v in parent_ref.items())
        ]
        return sorted(rows, key=lambda r: (r.get("position") or 0, r["id"]))

    async def upload_blob(self, data, path_hint):
        self._record(("upload_blob", path_hint))
        if self.fail_uploads:
            raise OSError("storage unavailable")
        self.blobs[path_hint] = data
        return {"path": path_hint}


@pytest.fixture
def repository():
    return RecordingRepository()


@pytest.fixture
def sqlite_engine():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=sqlite_engine)


@pytest.fixture
def sql_repository(session_factory, tmp_path):
    return SqlAlchemyRepository(session_factory, blob_root=str(tmp_path / "photos"))


def fill_info(tree):
    tree.update_intervention({
        "intervention_date": "2025-03-14",
        "start_time": "08:30",
        "end_time": "11:45",
        "technician": "J. Martin",
        "intervention_types": [InterventionTypeTag.MAINTENANCE_PREVENTIVE.value],
        "conclusion": "Installation conforme",
    })
    tree.select_client(1)
    tree.select_site(10)


@pytest.fixture
def fixed_tree():
    """Fixed report with one complete unit, ready to save"""
    tree = EntityTree.new(ReportVariant.FIXED)
    fill_info(tree)
    tree.update_unit(0, {"make": "Oldham", "model": "MX43", "serial_number": "C-001", "observations": "RAS"})
    tree.set_backup_power(0, {"model": "12V 7Ah"})

    tree.add_gas_detector(0)
    tree.update_gas_detector(0, 0, {
        "make": "Oldham", "model": "OLCT10N", "serial_number": "D-100", "gas_type": "CO",
        "sensitivity": {"value_before": "100", "value_after": "95"},
    })
    tree.add_threshold(0, 0)
    tree.update_threshold(0, 0, 0, {"value": "30"})
    tree.add_threshold(0, 0)  # Seuil 2 left blank

    tree.add_flame_detector(0)
    tree.update_flame_detector(0, 0, {"make": "Det-Tronics", "model": "X3301", "serial_number": "F-9"})
    return tree


@pytest.fixture
def portable_tree():
    tree = EntityTree.new(ReportVariant.PORTABLE)
    fill_info(tree)
    tree.update_portable_detector(0, {"make": "Dräger", "model": "X-am 2500", "serial_number": "P-77"})
    tree.add_gas(0)
    tree.update_gas(0, 0, {
        "gas_type": "CH4",
        "sensitivity": {"value_before": "50", "value_after": "48"},
        "threshold_1": "10", "threshold_2": "20", "vme": "",
    })
    return tree
