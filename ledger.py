"""Provenance ledger for EUDR due diligence.

Each public method is one operation: it derives the target addresses, loads or
creates records through the :class:`RecordStore`, checks the caller with the
:class:`AuthorizationGuard`, applies the transition and appends one audit
event, all inside a single session transaction. Any error rolls the whole
operation back.

Plots are created under the ledger's active schema version. Batches and
verifications inherit the tag of their plot, and status-history records the
tag of their batch, so a record is always interpreted under the rules it was
written with.
"""
import logging
import math
import time
from contextlib import contextmanager
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from audit import AuditLog
from errors import AddressOccupied, NonCompliantFarm, ValidationError
from guard import AuthorizationGuard
from schemas import (
    BatchStatus, BatchStatusUpdate, BatchStatusUpdated, CommodityType, ComplianceStatus,
    DDSReport, DDSReportGenerated, DeforestationRisk, FarmPlotDeactivated, FarmPlotRegistered,
    FarmPlotValidated, HarvestBatch, HarvestBatchRegistered, INT64_MAX, INT64_MIN, RecordKind,
    SatelliteVerification, SatelliteVerificationRecorded, ScoredFarmPlot, ValidatedFarmPlot,
)
from store import RecordStore
from tokens import TokenService
from utils import (
    apply_verification, batch_update_address, byte_len, farm_plot_address,
    harvest_batch_address, verification_address,
)
from versioning import ACTIVE_SCHEMA_VERSION, Gate, SchemaVersion, ruleset_for

logger = logging.getLogger(__name__)

MAX_ID_BYTES = 32
MAX_LABEL_BYTES = 64
MAX_HASH_BYTES = 64


def _check_len(value: str, limit: int, code: str, message: str) -> None:
    if byte_len(value) > limit:
        raise ValidationError(message, code)


def _check_timestamp(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not INT64_MIN <= value <= INT64_MAX:
        raise ValidationError(f"{name} must be a signed 64-bit integer", "InvalidTimestamp")


def _enum(cls, value, code: str):
    try:
        return cls(value)
    except ValueError:
        raise ValidationError(f"invalid {cls.__name__}: {value!r}", code) from None


class Ledger:
    def __init__(self, db: Session, schema_version: Optional[SchemaVersion] = None,
                 token_service: Optional[TokenService] = None,
                 clock: Optional[Callable[[], int]] = None):
        self.db = db
        self.clock = clock or (lambda: int(time.time()))
        self.schema_version = SchemaVersion(schema_version or ACTIVE_SCHEMA_VERSION)
        self.rules = ruleset_for(self.schema_version)
        self.token_service = token_service
        self.store = RecordStore(db, self.clock)
        self.guard = AuthorizationGuard()
        self.audit = AuditLog(db)

    @contextmanager
    def _atomic(self):
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    # ---------- Farm plots ----------
    def register_farm_plot(self, caller: str, plot_id: str, farmer_name: str, location: str,
                           geo_proof: str, area_hectares: float, commodity_type,
                           registration_timestamp: int, validator: Optional[str] = None) -> str:
        rules = self.rules
        _check_len(plot_id, MAX_ID_BYTES, "PlotIdTooLong", "Plot ID is too long (max 32 bytes)")
        _check_len(farmer_name, MAX_LABEL_BYTES, "FarmerNameTooLong", "Farmer name is too long (max 64 bytes)")
        _check_len(location, MAX_LABEL_BYTES, "LocationTooLong", "Location is too long (max 64 bytes)")
        _check_timestamp(registration_timestamp, "registration_timestamp")
        rules.check_geo_proof(geo_proof)
        if not area_hectares > 0 or math.isinf(area_hectares):
            raise ValidationError("Invalid area (must be > 0)", "InvalidArea")
        commodity = _enum(CommodityType, commodity_type, "InvalidCommodity")
        if rules.gate is Gate.VALIDATOR and not validator:
            raise ValidationError("A validator principal is required", "MissingValidator")
        self.guard.require_signer(caller, "register_farm_plot")

        address = farm_plot_address(plot_id, caller)
        common = dict(
            plot_id=plot_id,
            farmer=caller,
            farmer_name=farmer_name,
            location=location,
            area_hectares=float(area_hectares),
            commodity_type=commodity,
            registration_timestamp=registration_timestamp,
            last_verified=self.clock(),
        )
        if rules.gate is Gate.VALIDATOR:
            plot = ValidatedFarmPlot(schema_version=rules.version.value, polygon_hash=geo_proof,
                                     validator=validator, compliance_score=0, **common)
        else:
            plot = ScoredFarmPlot(schema_version=rules.version.value, coordinates=geo_proof, **common)

        with self._atomic():
            if rules.mints_token:
                # an occupied address must never reach the token service
                if self.store.exists(address):
                    raise AddressOccupied(f"address {address} is already occupied")
                plot.mint = self._mint(plot)
            self.store.create(address, RecordKind.FARM_PLOT, plot, owner=caller)
            self.audit.emit(FarmPlotRegistered(
                plot_id=plot_id,
                farmer=caller,
                geo_proof=geo_proof,
                schema_version=plot.schema_version,
                mint=getattr(plot, "mint", None),
                timestamp=registration_timestamp,
            ), address)
        logger.info("farm plot %s registered by %s under %s", plot_id, caller, rules.version.value)
        return address

    def _mint(self, plot: ScoredFarmPlot) -> str:
        if self.token_service is None:
            raise ValidationError(
                f"schema {plot.schema_version} mints identity tokens but no token service is configured",
                "TokenServiceMissing",
            )
        return self.token_service.mint(plot.plot_id, plot.farmer, plot.commodity_type.value)

    def validate_farm_plot(self, caller: str, plot_address: str):
        """Sign off a plot as deforestation-free. Only its bound validator may call this.

        Repeating it on a validated plot succeeds and resets score, risk and
        last_verified again.
        """
        with self._atomic():
            plot = self.store.find(plot_address, RecordKind.FARM_PLOT)
            ruleset_for(plot.schema_version).require_gate(Gate.VALIDATOR, "validate_farm_plot")
            self.guard.require_bound(caller, plot, "validator", "validate_farm_plot")
            now = self.clock()

            def apply(p):
                p.is_validated = True
                p.deforestation_risk = DeforestationRisk.LOW
                p.compliance_score = 100
                p.last_verified = now

            plot = self.store.mutate(plot_address, apply, RecordKind.FARM_PLOT)
            self.audit.emit(FarmPlotValidated(
                plot_id=plot.plot_id,
                validator=caller,
                is_validated=plot.is_validated,
                compliance_score=plot.compliance_score,
                deforestation_risk=plot.deforestation_risk,
                timestamp=now,
            ), plot_address)
        logger.info("farm plot %s validated by %s", plot.plot_id, caller)
        return plot

    def deactivate_farm_plot(self, caller: str, plot_address: str):
        with self._atomic():
            plot = self.store.find(plot_address, RecordKind.FARM_PLOT)
            self.guard.require_owner(caller, plot.farmer, "deactivate_farm_plot")
            now = self.clock()

            def apply(p):
                p.is_active = False

            plot = self.store.mutate(plot_address, apply, RecordKind.FARM_PLOT)
            self.audit.emit(FarmPlotDeactivated(
                plot_id=plot.plot_id, farmer=caller, is_active=plot.is_active, timestamp=now,
            ), plot_address)
        logger.info("farm plot %s deactivated", plot.plot_id)
        return plot

    # ---------- Harvest batches ----------
    def register_harvest_batch(self, caller: str, plot_address: str, batch_id: str,
                               weight_kg: int, harvest_timestamp: int) -> str:
        _check_len(batch_id, MAX_ID_BYTES, "BatchIdTooLong", "Batch ID is too long (max 32 bytes)")
        if isinstance(weight_kg, bool) or not isinstance(weight_kg, int) or weight_kg <= 0:
            raise ValidationError("Invalid weight (must be > 0)", "InvalidWeight")
        _check_timestamp(harvest_timestamp, "harvest_timestamp")

        with self._atomic():
            plot = self.store.find(plot_address, RecordKind.FARM_PLOT)
            self.guard.require_owner(caller, plot.farmer, "register_harvest_batch")
            if not ruleset_for(plot.schema_version).is_compliant(plot):
                logger.warning("batch %s rejected: plot %s is not compliant", batch_id, plot.plot_id)
                raise NonCompliantFarm("Farm is not compliant with EUDR requirements")

            address = harvest_batch_address(batch_id, caller)
            batch = HarvestBatch(
                schema_version=plot.schema_version,
                batch_id=batch_id,
                farm_plot=plot_address,
                farmer=caller,
                weight_kg=weight_kg,
                harvest_timestamp=harvest_timestamp,
                commodity_type=plot.commodity_type,
            )
            self.store.create(address, RecordKind.HARVEST_BATCH, batch, owner=caller, parent=plot_address)
            self.audit.emit(HarvestBatchRegistered(
                batch_id=batch_id,
                farm_plot=plot_address,
                weight_kg=weight_kg,
                timestamp=harvest_timestamp,
            ), address)
        logger.info("harvest batch %s registered against plot %s", batch_id, plot.plot_id)
        return address

    def update_batch_status(self, caller: str, batch_address: str, new_status, destination: str,
                            update_timestamp: Optional[int] = None, compliance_status=None) -> HarvestBatch:
        """Overwrite status and destination. Any status may follow any other."""
        status = _enum(BatchStatus, new_status, "InvalidStatus")
        compliance = _enum(ComplianceStatus, compliance_status, "InvalidComplianceStatus") \
            if compliance_status is not None else None
        _check_len(destination, MAX_LABEL_BYTES, "DestinationTooLong", "Destination string is too long")
        if update_timestamp is not None:
            _check_timestamp(update_timestamp, "update_timestamp")

        with self._atomic():
            batch = self.store.find(batch_address, RecordKind.HARVEST_BATCH)
            self.guard.require_owner(caller, batch.farmer, "update_batch_status")
            rules = ruleset_for(batch.schema_version)
            if rules.tracks_history and update_timestamp is None:
                raise ValidationError("update_timestamp is required for status history", "MissingUpdateTimestamp")

            def apply(b):
                b.status = status
                b.destination = destination
                if compliance is not None:
                    b.compliance_status = compliance

            batch = self.store.mutate(batch_address, apply, RecordKind.HARVEST_BATCH)
            if rules.tracks_history:
                self.store.create(
                    batch_update_address(batch.batch_id, update_timestamp),
                    RecordKind.BATCH_UPDATE,
                    BatchStatusUpdate(
                        schema_version=batch.schema_version,
                        batch_id=batch.batch_id,
                        harvest_batch=batch_address,
                        status=status,
                        destination=destination,
                        updated_by=caller,
                        update_timestamp=update_timestamp,
                    ),
                    owner=caller,
                    parent=batch_address,
                )
            self.audit.emit(BatchStatusUpdated(
                batch_id=batch.batch_id,
                new_status=status,
                destination=destination,
                compliance_status=batch.compliance_status,
                timestamp=update_timestamp if update_timestamp is not None else self.clock(),
            ), batch_address)
        logger.info("batch %s -> %s (%s)", batch.batch_id, status.value, destination)
        return batch

    # ---------- Verification ----------
    def record_satellite_verification(self, caller: str, plot_address: str, verification_hash: str,
                                      no_deforestation: bool, verification_timestamp: int) -> str:
        _check_len(verification_hash, MAX_HASH_BYTES, "InvalidHash", "Invalid verification hash")
        _check_timestamp(verification_timestamp, "verification_timestamp")
        self.guard.require_signer(caller, "record_satellite_verification")

        with self._atomic():
            plot = self.store.find(plot_address, RecordKind.FARM_PLOT)
            ruleset_for(plot.schema_version).require_gate(Gate.SCORE, "record_satellite_verification")
            address = verification_address(plot_address, caller, verification_timestamp)
            self.store.create(address, RecordKind.VERIFICATION, SatelliteVerification(
                schema_version=plot.schema_version,
                farm_plot=plot_address,
                verifier=caller,
                verification_timestamp=verification_timestamp,
                verification_hash=verification_hash,
                no_deforestation=no_deforestation,
            ), owner=caller, parent=plot_address)

            risk, score = apply_verification(plot.deforestation_risk, plot.compliance_score, no_deforestation)

            def apply(p):
                p.deforestation_risk = risk
                p.compliance_score = score
                p.last_verified = verification_timestamp

            self.store.mutate(plot_address, apply, RecordKind.FARM_PLOT)
            self.audit.emit(SatelliteVerificationRecorded(
                farm_plot=plot_address,
                verification_hash=verification_hash,
                compliant=no_deforestation,
                compliance_score=score,
                deforestation_risk=risk,
                timestamp=verification_timestamp,
            ), plot_address)
        if no_deforestation:
            logger.info("verification recorded for plot %s: no deforestation", plot.plot_id)
        else:
            logger.warning("deforestation detected on plot %s (verifier %s)", plot.plot_id, caller)
        return address

    # ---------- Reports ----------
    def generate_dds_data(self, batch_address: str, plot_address: str) -> DDSReport:
        """Compile the due-diligence statement for a batch from its plot's current state."""
        with self._atomic():
            batch = self.store.find(batch_address, RecordKind.HARVEST_BATCH)
            plot = self.store.find(plot_address, RecordKind.FARM_PLOT)
            if batch.farm_plot != plot_address:
                raise ValidationError("batch was not harvested from this plot", "PlotMismatch")
            rules = ruleset_for(plot.schema_version)
            report = DDSReport(
                batch_id=batch.batch_id,
                plot_id=plot.plot_id,
                farmer=plot.farmer,
                geo_proof=plot.geo_proof,
                commodity_type=plot.commodity_type,
                harvest_timestamp=batch.harvest_timestamp,
                weight_kg=batch.weight_kg,
                no_deforestation_verified=rules.no_deforestation_verified(plot),
                compliance_score=plot.compliance_score,
                last_verified=plot.last_verified,
                registration_timestamp=plot.registration_timestamp,
            )
            self.audit.emit(DDSReportGenerated(
                batch_id=batch.batch_id,
                compliance_score=plot.compliance_score,
                timestamp=self.clock(),
            ), batch_address)
        return report

    # ---------- Reads ----------
    def get_farm_plot(self, address: str):
        return self.store.find(address, RecordKind.FARM_PLOT)

    def get_harvest_batch(self, address: str) -> HarvestBatch:
        return self.store.find(address, RecordKind.HARVEST_BATCH)

    def list_farm_plots(self, farmer: Optional[str] = None) -> List[Tuple[str, object]]:
        return self.store.select(RecordKind.FARM_PLOT, owner=farmer)

    def list_harvest_batches(self, plot_address: str) -> List[Tuple[str, HarvestBatch]]:
        self.store.find(plot_address, RecordKind.FARM_PLOT)
        return self.store.select(RecordKind.HARVEST_BATCH, parent=plot_address)

    def list_verifications(self, plot_address: str) -> List[Tuple[str, SatelliteVerification]]:
        self.store.find(plot_address, RecordKind.FARM_PLOT)
        rows = self.store.select(RecordKind.VERIFICATION, parent=plot_address)
        return sorted(rows, key=lambda r: r[1].verification_timestamp)

    def batch_history(self, batch_address: str) -> List[Tuple[str, BatchStatusUpdate]]:
        self.store.find(batch_address, RecordKind.HARVEST_BATCH)
        rows = self.store.select(RecordKind.BATCH_UPDATE, parent=batch_address)
        return sorted(rows, key=lambda r: r[1].update_timestamp)

    def get_status_update(self, batch_id: str, update_timestamp: int) -> BatchStatusUpdate:
        return self.store.find(batch_update_address(batch_id, update_timestamp), RecordKind.BATCH_UPDATE)
