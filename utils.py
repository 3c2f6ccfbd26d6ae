import hashlib
import json
import struct
from typing import List, Dict, Any, Sequence, Tuple, Union

from schemas import DeforestationRisk, RecordKind

Seed = Union[str, bytes, int]

GENESIS = "GENESIS"

def compute_hash(prev_hash: str, payload: dict, timestamp: int) -> str:
    block = json.dumps({
        "prev_hash": prev_hash,
        "payload": payload,
        "timestamp": timestamp
    }, sort_keys=True)
    return hashlib.sha256(block.encode("utf-8")).hexdigest()

def verify_chain(events: List[Dict[str, Any]]) -> bool:
    prev = GENESIS
    for ev in events:
        expected = compute_hash(prev, ev["payload"], ev["timestamp"])
        if ev["hash"] != expected or ev["prev_hash"] != prev:
            return False
        prev = ev["hash"]
    return True

# ---------- Addressing ----------
def byte_len(value: str) -> int:
    return len(value.encode("utf-8"))

def _seed_bytes(seed: Seed) -> bytes:
    if isinstance(seed, bytes):
        return seed
    # bool is an int subclass but never a valid seed
    if isinstance(seed, int) and not isinstance(seed, bool):
        return struct.pack("<q", seed)
    if isinstance(seed, str):
        return seed.encode("utf-8")
    raise TypeError(f"unsupported seed type: {type(seed).__name__}")

def derive_address(kind: RecordKind, *seeds: Seed) -> str:
    """sha256 over length-prefixed seeds, the kind tag first.

    Integers are encoded as 8-byte little-endian timestamps. The formula must not
    change: records written under any schema revision are located by it.
    """
    h = hashlib.sha256()
    for part in (RecordKind(kind).value.encode("ascii"), *map(_seed_bytes, seeds)):
        h.update(struct.pack(">I", len(part)))
        h.update(part)
    return h.hexdigest()

def farm_plot_address(plot_id: str, farmer: str) -> str:
    return derive_address(RecordKind.FARM_PLOT, plot_id, farmer)

def harvest_batch_address(batch_id: str, farmer: str) -> str:
    return derive_address(RecordKind.HARVEST_BATCH, batch_id, farmer)

def verification_address(plot_address: str, verifier: str, verification_timestamp: int) -> str:
    return derive_address(RecordKind.VERIFICATION, plot_address, verifier, verification_timestamp)

def batch_update_address(batch_id: str, update_timestamp: int) -> str:
    return derive_address(RecordKind.BATCH_UPDATE, batch_id, update_timestamp)

def mint_address(plot_id: str, farmer: str) -> str:
    return derive_address(RecordKind.MINT, plot_id, farmer)

def polygon_hash(points: Sequence[Sequence[float]]) -> str:
    """Content hash of a geofence polygon given as [lat, lon] pairs."""
    canonical = json.dumps([[float(lat), float(lon)] for lat, lon in points], separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

# ---------- Compliance scoring ----------
def apply_verification(risk: DeforestationRisk, score: int, no_deforestation: bool) -> Tuple[DeforestationRisk, int]:
    """One negative signal zeroes the plot; a positive one restores it to 100."""
    if not no_deforestation:
        return DeforestationRisk.HIGH, 0
    return DeforestationRisk.LOW, max(score, 100)
