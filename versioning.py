"""Schema revisions of the ledger and the rules each one applies.

Records carry the tag they were written under, and every rule that touches a
record is looked up from that tag through :func:`ruleset_for`.
"""
import os
from dataclasses import dataclass
from enum import Enum

from errors import UnsupportedOperation, ValidationError
from schemas import DeforestationRisk
from utils import byte_len

COMPLIANCE_THRESHOLD = 70


class SchemaVersion(str, Enum):
    V1 = "v1"
    V2 = "v2"
    V3 = "v3"
    V4 = "v4"
    V5 = "v5"


class GeoProof(str, Enum):
    COORDINATES = "coordinates"
    POLYGON_HASH = "polygon_hash"


class Gate(str, Enum):
    SCORE = "score"
    VALIDATOR = "validator"


@dataclass(frozen=True)
class Ruleset:
    version: SchemaVersion
    geo_proof: GeoProof
    gate: Gate
    mints_token: bool
    tracks_history: bool

    @property
    def geo_proof_limit(self) -> int:
        return 128 if self.geo_proof is GeoProof.COORDINATES else 64

    def check_geo_proof(self, value: str) -> None:
        if byte_len(value) > self.geo_proof_limit:
            if self.geo_proof is GeoProof.COORDINATES:
                raise ValidationError("Invalid coordinates format", "InvalidCoordinates")
            raise ValidationError("Invalid polygon hash", "InvalidHash")

    def is_compliant(self, plot) -> bool:
        if not plot.is_active:
            return False
        if self.gate is Gate.VALIDATOR:
            return plot.is_validated
        return plot.compliance_score >= COMPLIANCE_THRESHOLD

    def no_deforestation_verified(self, plot) -> bool:
        if self.gate is Gate.VALIDATOR:
            return plot.is_validated
        return plot.deforestation_risk != DeforestationRisk.HIGH

    def require_gate(self, gate: "Gate", operation: str) -> None:
        if self.gate is not gate:
            raise UnsupportedOperation(
                f"{operation} is not available for records under schema {self.version.value}"
            )


RULESETS = {
    SchemaVersion.V1: Ruleset(SchemaVersion.V1, GeoProof.COORDINATES, Gate.SCORE, mints_token=False, tracks_history=False),
    SchemaVersion.V2: Ruleset(SchemaVersion.V2, GeoProof.COORDINATES, Gate.SCORE, mints_token=True, tracks_history=False),
    SchemaVersion.V3: Ruleset(SchemaVersion.V3, GeoProof.COORDINATES, Gate.SCORE, mints_token=True, tracks_history=True),
    SchemaVersion.V4: Ruleset(SchemaVersion.V4, GeoProof.POLYGON_HASH, Gate.VALIDATOR, mints_token=False, tracks_history=False),
    SchemaVersion.V5: Ruleset(SchemaVersion.V5, GeoProof.POLYGON_HASH, Gate.VALIDATOR, mints_token=False, tracks_history=True),
}

LATEST = SchemaVersion.V5
ACTIVE_SCHEMA_VERSION = SchemaVersion(os.getenv("FARMTRACE_SCHEMA_VERSION", LATEST.value))


def ruleset_for(version) -> Ruleset:
    try:
        return RULESETS[SchemaVersion(version)]
    except ValueError:
        raise ValidationError(f"unknown schema version: {version!r}", "UnknownSchemaVersion") from None
