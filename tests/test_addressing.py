import hashlib
import struct

import pytest

from schemas import RecordKind
from utils import (
    batch_update_address, derive_address, farm_plot_address, harvest_batch_address,
    mint_address, polygon_hash, verification_address,
)


def test_address_is_deterministic():
    assert farm_plot_address("PLOT-1", "alice") == farm_plot_address("PLOT-1", "alice")


def test_address_is_unique_per_plot_and_farmer():
    addresses = {
        farm_plot_address("PLOT-1", "alice"),
        farm_plot_address("PLOT-1", "bob"),
        farm_plot_address("PLOT-2", "alice"),
        harvest_batch_address("PLOT-1", "alice"),
        mint_address("PLOT-1", "alice"),
    }
    assert len(addresses) == 5


def test_length_prefix_prevents_seed_boundary_collisions():
    assert farm_plot_address("AB", "C") != farm_plot_address("A", "BC")


def test_formula_is_bit_exact():
    expected = hashlib.sha256()
    for part in (b"farm_plot", b"PLOT-1", b"alice"):
        expected.update(struct.pack(">I", len(part)) + part)
    assert farm_plot_address("PLOT-1", "alice") == expected.hexdigest()


def test_timestamps_are_little_endian_i64():
    expected = hashlib.sha256()
    for part in (b"batch_update", b"B-1", (1700000000).to_bytes(8, "little", signed=True)):
        expected.update(struct.pack(">I", len(part)) + part)
    assert batch_update_address("B-1", 1700000000) == expected.hexdigest()


def test_verification_address_depends_on_timestamp_and_verifier():
    plot = farm_plot_address("PLOT-1", "alice")
    a = verification_address(plot, "oracle", 10)
    assert a != verification_address(plot, "oracle", 11)
    assert a != verification_address(plot, "other-oracle", 10)


def test_rejects_unsupported_seed_types():
    with pytest.raises(TypeError):
        derive_address(RecordKind.FARM_PLOT, True)
    with pytest.raises(TypeError):
        derive_address(RecordKind.FARM_PLOT, 1.5)


def test_polygon_hash_is_a_64_char_digest():
    digest = polygon_hash([[5.36, -4.01], [5.37, -4.01], [5.37, -4.00]])
    assert len(digest) == 64
    assert digest == polygon_hash([(5.36, -4.01), (5.37, -4.01), (5.37, -4.0)])
    assert digest != polygon_hash([[5.37, -4.01], [5.36, -4.01], [5.37, -4.00]])
