import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from claim_store import ClaimStore
from db import init_db
from errors import DuplicateClaimError, DUPLICATE_ADDRESS


def _insert(store, x42, epix="epix1abc", balance=100):
    return store.insert(
        x42_address=x42,
        epix_address=epix,
        snapshot_balance=balance,
        signature=f"sig-{x42}",
        raw_json={"x42_address": x42, "epix_address": epix, "snapshot_balance": balance},
    )


def test_insert_and_find(store):
    row = _insert(store, "XG9pb7U3F32QQ4dShADV2v71hdLAFQA2Gf", balance=69223563046)
    assert row.id is not None

    found = store.find_by_source_address("XG9pb7U3F32QQ4dShADV2v71hdLAFQA2Gf")
    assert found is not None
    assert found.snapshot_balance == 69223563046
    assert found.raw_json["epix_address"] == "epix1abc"
    assert store.find_by_source_address("Xunknown") is None


def test_duplicate_insert_rejected(store):
    _insert(store, "XA")
    with pytest.raises(DuplicateClaimError) as exc:
        _insert(store, "XA", epix="epix1other", balance=5)
    assert exc.value.reason == DUPLICATE_ADDRESS
    assert store.count() == 1
    assert store.find_by_source_address("XA").epix_address == "epix1abc"


def test_sum_and_count(store):
    assert store.sum_balances() == 0
    assert store.count() == 0
    _insert(store, "XA", balance=300)
    _insert(store, "XB", balance=700)
    assert store.sum_balances() == 1000
    assert store.count() == 2


def test_list_newest_first_with_paging(store):
    for i in range(5):
        _insert(store, f"X{i}")
    rows = store.list_all("newest", offset=0, limit=2)
    assert [r.x42_address for r in rows] == ["X4", "X3"]
    rows = store.list_all("newest", offset=4, limit=2)
    assert [r.x42_address for r in rows] == ["X0"]


def test_list_by_destination(store):
    _insert(store, "X2", epix="epix-b")
    _insert(store, "X1", epix="epix-b")
    _insert(store, "X3", epix="epix-a")
    assert [r.x42_address for r in store.list_all("destination")] == ["X3", "X1", "X2"]


def test_unknown_ordering(store):
    with pytest.raises(ValueError):
        store.list_all("random")


def test_load_for_redistribution_returns_detached_records(store):
    _insert(store, "X1", epix="epix-b", balance=10)
    _insert(store, "X2", epix="epix-a", balance=20)
    records = store.load_for_redistribution()
    assert [(r.epix_address, r.snapshot_balance) for r in records] == [("epix-a", 20), ("epix-b", 10)]
    assert records[0].signature == "sig-X2"


# ────────────────────────────────────────────────────────────
# Racing submissions: the unique constraint is the arbiter
# ────────────────────────────────────────────────────────────

@pytest.fixture
def file_sessions(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'claims.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        future=True,
    )
    init_db(eng)
    yield sessionmaker(bind=eng, autoflush=False, autocommit=False, future=True)
    eng.dispose()


def test_interleaved_precheck_then_insert(file_sessions):
    a = ClaimStore(file_sessions())
    b = ClaimStore(file_sessions())

    # both requests pass the fast-path check before either commits
    assert a.find_by_source_address("XRACE") is None
    assert b.find_by_source_address("XRACE") is None

    _insert(a, "XRACE", epix="epix-first")
    with pytest.raises(DuplicateClaimError):
        _insert(b, "XRACE", epix="epix-second")

    check = ClaimStore(file_sessions())
    assert check.count() == 1
    assert check.find_by_source_address("XRACE").epix_address == "epix-first"


def test_concurrent_inserts_store_exactly_one(file_sessions):
    start = threading.Barrier(6)
    outcomes = []
    lock = threading.Lock()

    def worker(i):
        session = file_sessions()
        try:
            store = ClaimStore(session)
            start.wait()
            try:
                _insert(store, "XSAME", epix=f"epix{i}")
                result = "ok"
            except DuplicateClaimError:
                result = "dup"
            with lock:
                outcomes.append(result)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("dup") == 5
    assert ClaimStore(file_sessions()).count() == 1
