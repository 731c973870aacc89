"""
SQLAlchemy models for GasReport
Gas / flame detection maintenance reports - fixed and portable installations

The store only sees flat columns. Enums (unit kind, interlock state, intervention
type) are stored as their TEXT codes; calibration readings are stored as numbers.
Conversion happens in report_persistence.py, never here.
"""

from sqlalchemy import Column, Integer, String, Boolean, Text, ForeignKey, Date, Float, JSON, TIMESTAMP
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


# =============================================================================
# DIRECTORY TABLES (clients, sites, technicians)
# =============================================================================

class Client(Base):
    """Customer operating one or more sites"""
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True)
    name = Column(String(150), nullable=False)
    address = Column(Text)
    city = Column(String(100))
    active = Column(Boolean, default=True)
    created_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())

    sites = relationship("Site", back_populates="client")


class Site(Base):
    """Physical site of a client where installations live"""
    __tablename__ = "sites"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    address = Column(Text)
    city = Column(String(100))
    active = Column(Boolean, default=True)
    created_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())

    client = relationship("Client", back_populates="sites")


class Technician(Base):
    """Field technicians (and admins) who can be named on a report"""
    __tablename__ = "technicians"

    id = Column(Integer, primary_key=True)
    full_name = Column(String(100), nullable=False)
    email = Column(String(255))
    role = Column(String(20), default='technicien')  # technicien, admin
    active = Column(Boolean, default=True)
    created_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())


# =============================================================================
# INTERVENTION (report root)
# =============================================================================

class Intervention(Base):
    """
    One maintenance visit. Root of both report variants.
    report_type: "fixed" (units with detectors) or "portable" (handheld detectors)
    """
    __tablename__ = "interventions"

    id = Column(Integer, primary_key=True)
    report_type = Column(String(20), nullable=False, default='fixed')

    intervention_date = Column(Date)
    start_time = Column(String(5))    # HH:MM
    end_time = Column(String(5))      # HH:MM
    technician = Column(String(255))  # Display name(s) as written on the report

    # Primary type code plus the full list of tags
    intervention_type = Column(String(40))             # maintenance_preventive
    intervention_types = Column(JSON, default=list)    # ["maintenance_preventive", "installation"]

    client_id = Column(Integer, ForeignKey("clients.id"))
    site_id = Column(Integer, ForeignKey("sites.id"))
    room = Column(String(150))
    site_contact = Column(String(150))
    contact_phone = Column(String(50))
    report_email = Column(String(255))

    general_observations = Column(Text)
    conclusion = Column(Text)
    status = Column(String(20), default='planifiee')    # planifiee / en_cours / terminee

    created_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())
    updated_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())

    units = relationship("Unit", back_populates="intervention", cascade="all, delete-orphan")
    portable_detectors = relationship("PortableDetector", back_populates="intervention", cascade="all, delete-orphan")
    photos = relationship("InterventionPhoto", back_populates="intervention", cascade="all, delete-orphan")


# =============================================================================
# FIXED INSTALLATION: UNIT -> DETECTORS -> THRESHOLDS
# =============================================================================

class Unit(Base):
    """Control unit under inspection ("centrale" or "automate")"""
    __tablename__ = "units"

    id = Column(Integer, primary_key=True)
    intervention_id = Column(Integer, ForeignKey("interventions.id", ondelete="CASCADE"), index=True)
    position = Column(Integer, default=0)  # Order in the report

    kind = Column(String(20), default='centrale')  # centrale, automate
    make = Column(String(100))
    model = Column(String(100))
    serial_number = Column(String(100))
    firmware = Column(String(50))
    condition = Column(String(30))  # Bon, Moyen, Mauvais

    created_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())

    intervention = relationship("Intervention", back_populates="units")
    backup_power = relationship("BackupPower", back_populates="unit", uselist=False, cascade="all, delete-orphan")
    observation = relationship("UnitObservation", back_populates="unit", uselist=False, cascade="all, delete-orphan")
    gas_detectors = relationship("GasDetector", back_populates="unit", cascade="all, delete-orphan")
    flame_detectors = relationship("FlameDetector", back_populates="unit", cascade="all, delete-orphan")


class BackupPower(Base):
    """Backup power supply (AES) fitted to a unit"""
    __tablename__ = "backup_power"

    id = Column(Integer, primary_key=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="CASCADE"), index=True)
    present = Column(Boolean, default=True)
    model = Column(String(100))           # 2x 12V 7Ah
    status = Column(String(30))
    inverter_backed = Column(Boolean, default=False)
    replacement_date = Column(Date)
    next_due_date = Column(Date)

    unit = relationship("Unit", back_populates="backup_power")


class UnitObservation(Base):
    """Free-text findings for one unit"""
    __tablename__ = "unit_observations"

    id = Column(Integer, primary_key=True)
    intervention_id = Column(Integer, ForeignKey("interventions.id", ondelete="CASCADE"), index=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="CASCADE"), index=True)
    observations = Column(Text)
    work_performed = Column(Text)
    anomalies = Column(Text)
    recommendations = Column(Text)
    parts_replaced = Column(Text)

    unit = relationship("Unit", back_populates="observation")


class GasDetector(Base):
    """Gas detector wired to a unit, with its zero and sensitivity calibration"""
    __tablename__ = "gas_detectors"

    id = Column(Integer, primary_key=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="CASCADE"), index=True)
    intervention_id = Column(Integer, ForeignKey("interventions.id", ondelete="CASCADE"), index=True)
    position = Column(Integer, default=0)

    line = Column(String(50))
    make = Column(String(100))
    model = Column(String(100))
    serial_number = Column(String(100))
    gas_type = Column(String(50))
    connection_type = Column(String(30))   # 4-20mA, Numérique, Modbus, Autre
    connection_other = Column(String(100))
    measurement_range = Column(String(50))
    response_time = Column(String(30))

    # Zero calibration
    zero_gas = Column(String(100))
    zero_value_before = Column(Float)
    zero_value_after = Column(Float)
    zero_status = Column(String(20))

    # Sensitivity calibration
    sensitivity_gas = Column(String(100))
    sensitivity_value_before = Column(Float)   # Theoretical (test gas) value
    sensitivity_value_after = Column(Float)    # Measured value
    calibration_unit = Column(String(20))
    coefficient = Column(Float)
    sensitivity_status = Column(String(20))

    operational = Column(Boolean, default=True)
    untested = Column(Boolean, default=False)
    replacement_date = Column(Date)
    next_replacement_date = Column(Date)

    unit = relationship("Unit", back_populates="gas_detectors")
    thresholds = relationship("AlarmThreshold", back_populates="gas_detector", cascade="all, delete-orphan")


class AlarmThreshold(Base):
    """Alarm level configured on a gas detector, with its interlock"""
    __tablename__ = "alarm_thresholds"

    id = Column(Integer, primary_key=True)
    gas_detector_id = Column(Integer, ForeignKey("gas_detectors.id", ondelete="CASCADE"), index=True)
    position = Column(Integer, default=0)
    level = Column(Integer)            # 1-based alarm level
    name = Column(String(50))          # Seuil 1
    value = Column(Float)
    unit = Column(String(20))

    interlock_description = Column(Text)
    interlock_state = Column(String(20))  # operational, partial, non_operational

    # Independent flags - untested does not imply non operational
    operational = Column(Boolean, default=True)
    supervised = Column(Boolean, default=False)
    untested = Column(Boolean, default=False)

    gas_detector = relationship("GasDetector", back_populates="thresholds")


class FlameDetector(Base):
    """Flame detector wired to a unit"""
    __tablename__ = "flame_detectors"

    id = Column(Integer, primary_key=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="CASCADE"), index=True)
    intervention_id = Column(Integer, ForeignKey("interventions.id", ondelete="CASCADE"), index=True)
    position = Column(Integer, default=0)

    line = Column(String(50))
    make = Column(String(100))
    model = Column(String(100))
    serial_number = Column(String(100))
    connection_type = Column(String(30))
    connection_other = Column(String(100))
    measurement_range = Column(String(50))

    test_distance = Column(String(30))
    response_time = Column(String(30))
    test_status = Column(String(20))

    interlock_description = Column(Text)
    interlock_state = Column(String(20))
    operational = Column(Boolean, default=True)
    untested = Column(Boolean, default=False)

    unit = relationship("Unit", back_populates="flame_detectors")


# =============================================================================
# PORTABLE INSTALLATION: DETECTOR -> GASES
# =============================================================================

class PortableDetector(Base):
    """Handheld gas detector checked during an intervention"""
    __tablename__ = "portable_detectors"

    id = Column(Integer, primary_key=True)
    intervention_id = Column(Integer, ForeignKey("interventions.id", ondelete="CASCADE"), index=True)
    site_id = Column(Integer, ForeignKey("sites.id"))
    position = Column(Integer, default=0)

    make = Column(String(100))
    model = Column(String(100))
    serial_number = Column(String(100))
    condition = Column(String(30))

    audible_alarm = Column(Boolean, default=False)
    visual_alarm = Column(Boolean, default=False)
    vibrating_alarm = Column(Boolean, default=False)
    parts_replaced = Column(Text)

    intervention = relationship("Intervention", back_populates="portable_detectors")
    gases = relationship("PortableGas", back_populates="portable_detector", cascade="all, delete-orphan")


class PortableGas(Base):
    """One sensor (gas channel) of a portable detector"""
    __tablename__ = "portable_gases"

    id = Column(Integer, primary_key=True)
    portable_detector_id = Column(Integer, ForeignKey("portable_detectors.id", ondelete="CASCADE"), index=True)
    intervention_id = Column(Integer, ForeignKey("interventions.id", ondelete="CASCADE"), index=True)
    position = Column(Integer, default=0)

    gas_type = Column(String(50))
    measurement_range = Column(String(50))
    replacement_date = Column(Date)
    next_replacement_date = Column(Date)

    zero_gas = Column(String(100))
    zero_value_before = Column(Float)
    zero_value_after = Column(Float)
    zero_status = Column(String(20))

    sensitivity_gas = Column(String(100))
    sensitivity_value_before = Column(Float)
    sensitivity_value_after = Column(Float)
    calibration_unit = Column(String(20))
    coefficient = Column(Float)
    sensitivity_status = Column(String(20))

    # Limits kept as written on the instrument label
    threshold_1 = Column(String(30))
    threshold_2 = Column(String(30))
    threshold_3 = Column(String(30))
    vme = Column(String(30))
    vle = Column(String(30))

    portable_detector = relationship("PortableDetector", back_populates="gases")


# =============================================================================
# PHOTOS
# =============================================================================

class InterventionPhoto(Base):
    """Reference to an uploaded photo blob"""
    __tablename__ = "intervention_photos"

    id = Column(Integer, primary_key=True)
    intervention_id = Column(Integer, ForeignKey("interventions.id", ondelete="CASCADE"), index=True)
    path = Column(Text, nullable=False)            # Relative path in blob storage
    category = Column(String(30), default='conclusion')
    position = Column(Integer, default=0)
    created_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())

    intervention = relationship("Intervention", back_populates="photos")


# =============================================================================
# AUDIT LOG
# =============================================================================

class AuditLog(Base):
    """
    Audit trail for report saves.
    Uses the technician named on the report (honor system), not login.
    """
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True)

    # Who
    technician_name = Column(String(255))

    # What
    action = Column(String(50), nullable=False)  # CREATE, UPDATE, DUPLICATE
    entity_type = Column(String(50))              # intervention
    entity_id = Column(Integer)
    entity_display = Column(String(255))          # "Intervention 42 (fixed)"

    # Details
    summary = Column(Text)
    fields_changed = Column(JSON)

    created_at = Column(TIMESTAMP(timezone=True), default=func.current_timestamp())
