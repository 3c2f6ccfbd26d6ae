import pytest

from conftest import FARMER, ORACLE, OTHER_FARMER, VALIDATOR
from errors import AddressOccupied, NonCompliantFarm, NotFound, Unauthorized, ValidationError
from schemas import BatchStatus, CommodityType, ComplianceStatus
from utils import batch_update_address, harvest_batch_address
from versioning import SchemaVersion


@pytest.fixture
def scored(make_ledger, register_plot):
    ledger = make_ledger(SchemaVersion.V1)
    return ledger, register_plot(ledger, commodity_type="Coffee")


@pytest.fixture
def tracked(make_ledger, register_plot):
    ledger = make_ledger(SchemaVersion.V5)
    plot = register_plot(ledger)
    ledger.validate_farm_plot(VALIDATOR, plot)
    batch = ledger.register_harvest_batch(FARMER, plot, "BATCH-001", 500, 1_700_000_100)
    return ledger, plot, batch


def test_register_copies_commodity_and_defaults(scored):
    ledger, plot = scored
    address = ledger.register_harvest_batch(FARMER, plot, "BATCH-001", 500, 1_700_000_100)
    assert address == harvest_batch_address("BATCH-001", FARMER)
    batch = ledger.get_harvest_batch(address)
    assert batch.commodity_type == CommodityType.COFFEE
    assert batch.status == BatchStatus.HARVESTED
    assert batch.compliance_status == ComplianceStatus.COMPLIANT
    assert batch.destination == ""
    assert batch.farm_plot == plot
    assert batch.schema_version == "v1"


def test_gate_fails_below_threshold(scored):
    ledger, plot = scored
    ledger.record_satellite_verification(ORACLE, plot, "h" * 64, False, 10)
    with pytest.raises(NonCompliantFarm):
        ledger.register_harvest_batch(FARMER, plot, "BATCH-001", 500, 11)
    with pytest.raises(NotFound):
        ledger.get_harvest_batch(harvest_batch_address("BATCH-001", FARMER))


def test_gate_fails_for_unvalidated_plot(make_ledger, register_plot):
    ledger = make_ledger(SchemaVersion.V4)
    plot = register_plot(ledger)
    with pytest.raises(NonCompliantFarm):
        ledger.register_harvest_batch(FARMER, plot, "BATCH-001", 100, 1)


def test_gate_fails_for_inactive_plot(scored):
    ledger, plot = scored
    ledger.deactivate_farm_plot(FARMER, plot)
    with pytest.raises(NonCompliantFarm):
        ledger.register_harvest_batch(FARMER, plot, "BATCH-001", 100, 1)


def test_only_plot_owner_registers_batches(scored):
    ledger, plot = scored
    with pytest.raises(Unauthorized):
        ledger.register_harvest_batch(OTHER_FARMER, plot, "BATCH-001", 100, 1)


def test_missing_plot(scored):
    ledger, _ = scored
    with pytest.raises(NotFound):
        ledger.register_harvest_batch(FARMER, "0" * 64, "BATCH-001", 100, 1)


@pytest.mark.parametrize("batch_id,weight,code", [
    ("B" * 33, 100, "BatchIdTooLong"),
    ("BATCH-001", 0, "InvalidWeight"),
    ("BATCH-001", -5, "InvalidWeight"),
    ("BATCH-001", 2.5, "InvalidWeight"),
])
def test_register_rejects_invalid_fields(scored, batch_id, weight, code):
    ledger, plot = scored
    with pytest.raises(ValidationError) as exc:
        ledger.register_harvest_batch(FARMER, plot, batch_id, weight, 1)
    assert exc.value.code == code


def test_duplicate_batch(scored):
    ledger, plot = scored
    ledger.register_harvest_batch(FARMER, plot, "BATCH-001", 100, 1)
    with pytest.raises(AddressOccupied):
        ledger.register_harvest_batch(FARMER, plot, "BATCH-001", 900, 2)
    assert ledger.get_harvest_batch(harvest_batch_address("BATCH-001", FARMER)).weight_kg == 100


# ---------- status updates ----------
def test_status_is_freely_assignable(scored):
    ledger, plot = scored
    batch = ledger.register_harvest_batch(FARMER, plot, "BATCH-001", 100, 1)
    ledger.update_batch_status(FARMER, batch, BatchStatus.DELIVERED, "Rotterdam")
    updated = ledger.update_batch_status(FARMER, batch, "Harvested", "")
    assert updated.status == BatchStatus.HARVESTED
    assert ledger.get_harvest_batch(batch).destination == ""


def test_status_update_can_set_compliance_status(scored):
    ledger, plot = scored
    batch = ledger.register_harvest_batch(FARMER, plot, "BATCH-001", 100, 1)
    ledger.update_batch_status(FARMER, batch, "Processing", "Mill", compliance_status="PendingReview")
    assert ledger.get_harvest_batch(batch).compliance_status == ComplianceStatus.PENDING_REVIEW


def test_status_update_checks(scored):
    ledger, plot = scored
    batch = ledger.register_harvest_batch(FARMER, plot, "BATCH-001", 100, 1)
    with pytest.raises(ValidationError) as exc:
        ledger.update_batch_status(FARMER, batch, "InTransit", "d" * 65)
    assert exc.value.code == "DestinationTooLong"
    with pytest.raises(ValidationError) as exc:
        ledger.update_batch_status(FARMER, batch, "Lost", "Port X")
    assert exc.value.code == "InvalidStatus"
    with pytest.raises(Unauthorized):
        ledger.update_batch_status(OTHER_FARMER, batch, "InTransit", "Port X")
    assert ledger.get_harvest_batch(batch).status == BatchStatus.HARVESTED


def test_no_history_without_tracking(scored):
    ledger, plot = scored
    batch = ledger.register_harvest_batch(FARMER, plot, "BATCH-001", 100, 1)
    ledger.update_batch_status(FARMER, batch, "InTransit", "Port X", update_timestamp=5)
    assert ledger.batch_history(batch) == []


def test_history_records_each_update(tracked):
    ledger, _, batch = tracked
    ledger.update_batch_status(FARMER, batch, "Processing", "Mill", update_timestamp=200)
    ledger.update_batch_status(FARMER, batch, "InTransit", "Port X", update_timestamp=100)

    history = ledger.batch_history(batch)
    assert [u.status for _, u in history] == [BatchStatus.IN_TRANSIT, BatchStatus.PROCESSING]
    assert history[0][0] == batch_update_address("BATCH-001", 100)
    first = ledger.get_status_update("BATCH-001", 200)
    assert (first.destination, first.updated_by) == ("Mill", FARMER)


def test_history_timestamp_collision(tracked):
    ledger, _, batch = tracked
    ledger.update_batch_status(FARMER, batch, "InTransit", "Port X", update_timestamp=100)
    with pytest.raises(AddressOccupied):
        ledger.update_batch_status(FARMER, batch, "Delivered", "Hamburg", update_timestamp=100)
    current = ledger.get_harvest_batch(batch)
    assert (current.status, current.destination) == (BatchStatus.IN_TRANSIT, "Port X")
    assert len(ledger.batch_history(batch)) == 1


def test_history_requires_timestamp(tracked):
    ledger, _, batch = tracked
    with pytest.raises(ValidationError) as exc:
        ledger.update_batch_status(FARMER, batch, "InTransit", "Port X")
    assert exc.value.code == "MissingUpdateTimestamp"


def test_list_batches_for_plot(scored, clock):
    ledger, plot = scored
    ledger.register_harvest_batch(FARMER, plot, "BATCH-001", 100, 1)
    clock.advance()
    ledger.register_harvest_batch(FARMER, plot, "BATCH-002", 200, 2)
    assert [b.batch_id for _, b in ledger.list_harvest_batches(plot)] == ["BATCH-001", "BATCH-002"]


def test_history_timestamp_must_fit_64_bits(tracked):
    ledger, plot, batch = tracked
    with pytest.raises(ValidationError) as exc:
        ledger.update_batch_status(FARMER, batch, "InTransit", "Port X", update_timestamp=2**63)
    assert exc.value.code == "InvalidTimestamp"
    with pytest.raises(ValidationError) as exc:
        ledger.register_harvest_batch(FARMER, plot, "BATCH-002", 10, -2**63 - 1)
    assert exc.value.code == "InvalidTimestamp"
    assert ledger.batch_history(batch) == []
