"""
CLI command tests using Flask's CLI runner.
"""

from datetime import datetime

from retailcore.models import Branch, Distribution
from retailcore.services import ledger_service
from retailcore.services.ledger_service import DIRECTION_CREDIT, OWNER_BRANCH


def test_system_init_creates_pool_account_idempotently(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=['system', 'init'])
    second = runner.invoke(args=['system', 'init'])

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert db_session.query(Branch).filter_by(code=app.config['INVESTOR_POOL_BRANCH_CODE']).count() == 1


def test_branch_and_investor_commands(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=['branches', 'create', '--name', 'Downtown', '--code', 'DT'])
    assert result.exit_code == 0, result.output
    assert 'Downtown' in runner.invoke(args=['branches', 'list']).output

    result = runner.invoke(args=['investors', 'create', '--name', 'Alice'])
    assert result.exit_code == 0, result.output

    result = runner.invoke(args=['investors', 'add-capital', '1', '0'])
    assert result.exit_code != 0
    assert 'INVALID_AMOUNT' in result.output


def test_distribution_commands(app, db_session, branch_a, investors):
    ledger_service.post_entry(
        OWNER_BRANCH, branch_a.id, 'Sale', '10000.00', DIRECTION_CREDIT, posted_at=datetime(2025, 6, 15)
    )
    db_session.commit()
    runner = app.test_cli_runner()

    preview = runner.invoke(args=['distributions', 'preview', '2025-06'])
    assert preview.exit_code == 0, preview.output
    assert '7000.00' in preview.output
    assert Distribution.query.count() == 0

    result = runner.invoke(args=['distributions', 'finalize', '2025-06', '--actor-id', '1', '--yes'])
    assert result.exit_code == 0, result.output
    assert 'pool=7000.00' in result.output

    again = runner.invoke(args=['distributions', 'finalize', '2025-06', '--actor-id', '1', '--yes'])
    assert again.exit_code != 0
    assert 'ALREADY_FINALIZED' in again.output

    bad = runner.invoke(args=['distributions', 'preview', '2025-13'])
    assert bad.exit_code != 0
