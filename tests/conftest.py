import pathlib
import sys

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


# Ensure repo root is on PYTHONPATH for the flat top-level modules.
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from database import init_db  # noqa: E402
from ledger import Ledger  # noqa: E402
from tokens import LocalTokenService  # noqa: E402
from utils import polygon_hash  # noqa: E402
from versioning import SchemaVersion  # noqa: E402

FARMER = "farmer-silva"
OTHER_FARMER = "farmer-kouassi"
VALIDATOR = "validator-gee"
ORACLE = "oracle-sentinel2"

POLYGON = [[5.3599, -4.0083], [5.3610, -4.0083], [5.3610, -4.0070], [5.3599, -4.0070]]


class Clock:
    def __init__(self, start: int = 1_700_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int = 1) -> int:
        self.now += seconds
        return self.now


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def tokens():
    return LocalTokenService()


@pytest.fixture
def make_ledger(db, clock, tokens):
    def _make(version=SchemaVersion.V5, token_service=tokens):
        return Ledger(db, schema_version=version, token_service=token_service, clock=clock)
    return _make


@pytest.fixture
def register_plot(clock):
    """Register a plot with sensible defaults for the ledger's schema."""
    def _register(ledger, caller=FARMER, plot_id="PLOT-TEST-001", **overrides):
        scored = ledger.rules.gate.value == "score"
        args = dict(
            farmer_name="Silva Cocoa Farm",
            location="Cote d'Ivoire, Aboisso Region",
            geo_proof="5.3599,-4.0083" if scored else polygon_hash(POLYGON),
            area_hectares=2.5,
            commodity_type="Cocoa",
            registration_timestamp=clock.now,
            validator=None if scored else VALIDATOR,
        )
        args.update(overrides)
        return ledger.register_farm_plot(caller, plot_id, **args)
    return _register
