"""
CLI command tests (flask dsr ..., flask system ...).
"""

from dsr.models import DailyStockRecord, ReconciliationRun


class TestDsrCommands:

    def test_reconcile(self, app, db_session, make_product):
        make_product("Large Cylinder", full=4, empty=4)
        runner = app.test_cli_runner()

        result = runner.invoke(args=["dsr", "reconcile", "--date", "2026-10-18"])

        assert result.exit_code == 0, result.output
        assert "PASS 2026-10-18: 1 products, 1 written" in result.output
        assert db_session.query(DailyStockRecord).count() == 1

    def test_reconcile_holder(self, app, db_session, make_product):
        make_product("Large Cylinder", full=4, empty=4)

        result = app.test_cli_runner().invoke(
            args=["dsr", "reconcile", "--date", "2026-10-18", "--holder", "emp-7"]
        )

        assert result.exit_code == 0, result.output
        assert "PASS 2026-10-18 [emp-7]: 1 products" in result.output
        assert db_session.query(DailyStockRecord).one().holder_key == "emp-7"

    def test_reconcile_bad_date(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["dsr", "reconcile", "--date", "tomorrow"])
        assert result.exit_code == 2

    def test_cutoff_not_due(self, app, db_session, make_product):
        make_product("Large Cylinder", full=4, empty=4)
        result = app.test_cli_runner().invoke(args=["dsr", "cutoff", "--now", "2026-10-18T10:00:00Z"])
        assert result.exit_code == 0, result.output
        assert "SKIP" in result.output

    def test_cutoff_due(self, app, db_session, make_product):
        make_product("Large Cylinder", full=4, empty=4)
        runner = app.test_cli_runner()

        first = runner.invoke(args=["dsr", "cutoff", "--now", "2026-10-18T19:56:00Z"])
        second = runner.invoke(args=["dsr", "cutoff", "--now", "2026-10-18T19:57:00Z"])

        assert first.exit_code == 0, first.output
        assert "PASS 2026-10-18" in first.output
        assert "SKIP" in second.output
        assert db_session.query(ReconciliationRun).filter_by(trigger="cutoff").count() == 1

    def test_cutoff_bad_now(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["dsr", "cutoff", "--now", "half past"])
        assert result.exit_code == 2

    def test_rebuild(self, app, db_session, make_product):
        make_product("Large Cylinder", full=4, empty=4)
        result = app.test_cli_runner().invoke(
            args=["dsr", "rebuild", "--start", "2026-10-17", "--end", "2026-10-18"]
        )
        assert result.exit_code == 0, result.output
        assert "Rebuilt 2 day(s)" in result.output
        assert db_session.query(DailyStockRecord).count() == 2

    def test_rebuild_inverted_range(self, app, db_session):
        result = app.test_cli_runner().invoke(
            args=["dsr", "rebuild", "--start", "2026-10-18", "--end", "2026-10-17"]
        )
        assert result.exit_code == 2


class TestSystemCommands:

    def test_init_db_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        assert runner.invoke(args=["system", "init-db"]).exit_code == 0
        result = runner.invoke(args=["system", "init-db"])
        assert result.exit_code == 0
        assert "PASS Database ready." in result.output
