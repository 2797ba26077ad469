"""
Concurrency tests against a file-backed SQLite database.

Each worker thread pushes its own app context and therefore uses its own
session and connection, as separate requests would.
"""

import threading

import pytest

from retailcore import create_app
from retailcore.errors import InsufficientStock
from retailcore.extensions import db
from retailcore.models import LedgerEntry, StockCounter
from retailcore.services import branch_service, inventory_service, ledger_service
from retailcore.services.ledger_service import DIRECTION_CREDIT, ENTRY_SALE, OWNER_BRANCH


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'LOCK_RETRY_ATTEMPTS': 25,
        'LOCK_RETRY_BACKOFF_SECONDS': 0.01,
        'STORAGE_TIMEOUT_SECONDS': 10,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def _run_threads(app, count, work):
    """Run work(index) in count threads, each in its own app context; return outcomes."""
    outcomes = [None] * count
    barrier = threading.Barrier(count)

    def worker(index):
        with app.app_context():
            barrier.wait()
            try:
                outcomes[index] = work(index)
                db.session.commit()
            except Exception as exc:
                db.session.rollback()
                outcomes[index] = exc

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


def test_concurrent_reservations_never_oversell(file_app):
    with file_app.app_context():
        branch = branch_service.create_branch(name="Downtown", code="DT")
        product = inventory_service.create_product(sku="PHN-001", name="Handset", branch_cost="50.00")
        for n in range(5):
            inventory_service.receive_item(serial_no=f"SN-{n}", product_id=product.id, branch_id=branch.id)
        db.session.commit()
        assert db.session.query(StockCounter).filter_by(product_id=product.id, branch_id=branch.id).count() == 1
        product_id, branch_id = product.id, branch.id

    outcomes = _run_threads(file_app, 10, lambda _: inventory_service.reserve(product_id, branch_id, 1))

    successes = [o for o in outcomes if not isinstance(o, Exception)]
    failures = [o for o in outcomes if isinstance(o, Exception)]
    assert len(successes) == 5
    assert all(isinstance(f, InsufficientStock) for f in failures), failures

    with file_app.app_context():
        level = inventory_service.get_available_count(product_id, branch_id)
        assert (level.physical_count, level.reserved_count, level.available_count) == (5, 5, 0)


def test_concurrent_postings_keep_running_balance_contiguous(file_app):
    with file_app.app_context():
        branch = branch_service.create_branch(name="Downtown", code="DT")
        db.session.commit()
        branch_id = branch.id

    outcomes = _run_threads(
        file_app, 8,
        lambda _: ledger_service.post_entry(OWNER_BRANCH, branch_id, ENTRY_SALE, "1.00", DIRECTION_CREDIT),
    )
    assert not [o for o in outcomes if isinstance(o, Exception)]

    with file_app.app_context():
        entries = (
            db.session.query(LedgerEntry)
            .filter_by(owner_kind=OWNER_BRANCH, owner_id=branch_id)
            .order_by(LedgerEntry.sequence)
            .all()
        )
        assert [e.sequence for e in entries] == list(range(1, 9))
        assert [e.running_balance_cents for e in entries] == [100 * n for n in range(1, 9)]
