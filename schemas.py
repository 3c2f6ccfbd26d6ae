from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

INT64_MIN = -2**63
INT64_MAX = 2**63 - 1

# timestamps are stored and hashed as signed 64-bit integers
Timestamp = Annotated[int, Field(ge=INT64_MIN, le=INT64_MAX)]


class RecordKind(str, Enum):
    FARM_PLOT = "farm_plot"
    HARVEST_BATCH = "harvest_batch"
    VERIFICATION = "verification"
    BATCH_UPDATE = "batch_update"
    MINT = "mint"


class CommodityType(str, Enum):
    COCOA = "Cocoa"
    COFFEE = "Coffee"
    PALM_OIL = "PalmOil"
    SOY = "Soy"
    CATTLE = "Cattle"
    RUBBER = "Rubber"
    TIMBER = "Timber"


class DeforestationRisk(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class BatchStatus(str, Enum):
    HARVESTED = "Harvested"
    PROCESSING = "Processing"
    IN_TRANSIT = "InTransit"
    DELIVERED = "Delivered"


class ComplianceStatus(str, Enum):
    COMPLIANT = "Compliant"
    PENDING_REVIEW = "PendingReview"
    NON_COMPLIANT = "NonCompliant"


class VerificationType(str, Enum):
    SATELLITE = "Satellite"
    AUDIT = "Audit"
    MANUAL = "Manual"


# ---------- Stored records ----------
class FarmPlotBase(BaseModel):
    plot_id: str
    farmer: str
    farmer_name: str
    location: str
    area_hectares: float
    commodity_type: CommodityType
    registration_timestamp: int
    deforestation_risk: DeforestationRisk = DeforestationRisk.LOW
    compliance_score: int = 100
    last_verified: int
    is_active: bool = True


class ScoredFarmPlot(FarmPlotBase):
    """Raw-coordinate plot gated on its compliance score."""
    schema_version: Literal["v1", "v2", "v3"]
    coordinates: str
    mint: Optional[str] = None

    @property
    def geo_proof(self) -> str:
        return self.coordinates


class ValidatedFarmPlot(FarmPlotBase):
    """Geofence-hash plot gated on a one-time sign-off by its bound validator."""
    schema_version: Literal["v4", "v5"]
    polygon_hash: str
    is_validated: bool = False
    validator: str

    @property
    def geo_proof(self) -> str:
        return self.polygon_hash


FarmPlot = Annotated[Union[ScoredFarmPlot, ValidatedFarmPlot], Field(discriminator="schema_version")]


class HarvestBatch(BaseModel):
    schema_version: str
    batch_id: str
    farm_plot: str
    farmer: str
    weight_kg: int
    harvest_timestamp: Timestamp
    commodity_type: CommodityType
    status: BatchStatus = BatchStatus.HARVESTED
    compliance_status: ComplianceStatus = ComplianceStatus.COMPLIANT
    destination: str = ""


class SatelliteVerification(BaseModel):
    schema_version: str
    farm_plot: str
    verifier: str
    verification_timestamp: int
    verification_hash: str
    no_deforestation: bool
    verification_type: VerificationType = VerificationType.SATELLITE


class BatchStatusUpdate(BaseModel):
    schema_version: str
    batch_id: str
    harvest_batch: str
    status: BatchStatus
    destination: str
    updated_by: str
    update_timestamp: int


PAYLOAD_ADAPTERS: Dict[RecordKind, TypeAdapter] = {
    RecordKind.FARM_PLOT: TypeAdapter(FarmPlot),
    RecordKind.HARVEST_BATCH: TypeAdapter(HarvestBatch),
    RecordKind.VERIFICATION: TypeAdapter(SatelliteVerification),
    RecordKind.BATCH_UPDATE: TypeAdapter(BatchStatusUpdate),
}


def load_payload(kind: RecordKind, raw: str) -> BaseModel:
    return PAYLOAD_ADAPTERS[RecordKind(kind)].validate_json(raw)


# ---------- Request bodies ----------
class RegisterFarmPlot(BaseModel):
    plot_id: str
    farmer_name: str
    location: str
    # coordinates or geofence polygon hash, depending on schema
    geo_proof: Optional[str] = None
    # [lat, lon] vertices, hashed server-side into geo_proof
    polygon: Optional[List[Tuple[float, float]]] = Field(None, min_length=3)
    area_hectares: float
    commodity_type: CommodityType
    registration_timestamp: Timestamp
    validator: Optional[str] = None

    @model_validator(mode="after")
    def one_geo_proof(self):
        if (self.geo_proof is None) == (self.polygon is None):
            raise ValueError("exactly one of geo_proof or polygon is required")
        return self


class RegisterHarvestBatch(BaseModel):
    batch_id: str
    weight_kg: int
    harvest_timestamp: Timestamp


class UpdateBatchStatus(BaseModel):
    new_status: BatchStatus
    destination: str = ""
    update_timestamp: Optional[Timestamp] = None
    compliance_status: Optional[ComplianceStatus] = None


class RecordVerification(BaseModel):
    verification_hash: str
    no_deforestation: bool
    verification_timestamp: Timestamp


# ---------- Responses ----------
class FarmPlotOut(BaseModel):
    address: str
    record: FarmPlot


class HarvestBatchOut(BaseModel):
    address: str
    record: HarvestBatch


class VerificationOut(BaseModel):
    address: str
    record: SatelliteVerification


class StatusUpdateOut(BaseModel):
    address: str
    record: BatchStatusUpdate


class AddressOut(BaseModel):
    kind: RecordKind
    address: str


class DDSReport(BaseModel):
    batch_id: str
    plot_id: str
    farmer: str
    geo_proof: str
    commodity_type: CommodityType
    harvest_timestamp: int
    weight_kg: int
    no_deforestation_verified: bool
    compliance_score: int
    last_verified: int
    registration_timestamp: int


class AuditEntry(BaseModel):
    id: int
    type: str
    address: str
    payload: Dict[str, Any]
    timestamp: int
    prev_hash: str
    hash: str


class AuditList(BaseModel):
    items: List[AuditEntry]
    total: int
    page: int
    page_size: int


# ---------- Audit events ----------
class FarmPlotRegistered(BaseModel):
    plot_id: str
    farmer: str
    geo_proof: str
    schema_version: str
    mint: Optional[str] = None
    timestamp: int


class FarmPlotValidated(BaseModel):
    plot_id: str
    validator: str
    is_validated: bool
    compliance_score: int
    deforestation_risk: DeforestationRisk
    timestamp: int


class FarmPlotDeactivated(BaseModel):
    plot_id: str
    farmer: str
    is_active: bool
    timestamp: int


class HarvestBatchRegistered(BaseModel):
    batch_id: str
    farm_plot: str
    weight_kg: int
    timestamp: int


class BatchStatusUpdated(BaseModel):
    batch_id: str
    new_status: BatchStatus
    destination: str
    compliance_status: ComplianceStatus
    timestamp: int


class SatelliteVerificationRecorded(BaseModel):
    farm_plot: str
    verification_hash: str
    compliant: bool
    compliance_score: int
    deforestation_risk: DeforestationRisk
    timestamp: int


class DDSReportGenerated(BaseModel):
    batch_id: str
    compliance_score: int
    timestamp: int
