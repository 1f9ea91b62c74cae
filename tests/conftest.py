import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chain.node_client import AddressValidation, IndexerTip
from claim_store import ClaimStore
from db import init_db
from errors import ChainUnavailable

SNAPSHOT_HEIGHT = 3_000_000


class FakeChain:
    """In-memory stand-in for ChainClient. Set `down` to simulate an unreachable node."""

    def __init__(self):
        self.tip_height = SNAPSHOT_HEIGHT
        self.tip_hash = "180d965fba96850ea57454f4149d4a7b514f8ec0513aacbc7cbf112180ab3e32"
        self.balances = {}
        self.signature_ok = True
        self.down = set()
        self.verified_messages = []

    def _check(self, op):
        if op in self.down:
            raise ChainUnavailable(op, "timed out")

    def get_tip(self):
        self._check("get_tip")
        return IndexerTip(self.tip_hash, self.tip_height)

    def get_tip_height(self):
        return self.get_tip().tip_height

    def get_balance(self, address, min_confirmations=1):
        self._check("get_balance")
        return self.balances.get(address)

    def verify_signature(self, address, message, signature):
        self._check("verify_signature")
        self.verified_messages.append((address, message, signature))
        return self.signature_ok

    def validate_address(self, address):
        self._check("validate_address")
        return AddressValidation(is_valid=address.startswith("X"), is_witness=False)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def store(session):
    return ClaimStore(session)


@pytest.fixture
def chain():
    return FakeChain()
