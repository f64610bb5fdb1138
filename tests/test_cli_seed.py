"""Tests for the demo seeder and the Flask CLI commands."""

from herbtrace.models.traceability import BatchStatus
from herbtrace.services.demo_seed import seed_demo_batches


class TestSeedDemoBatches:
    def test_stages_cycle(self, ledger):
        keys = seed_demo_batches(5, ledger=ledger)
        assert keys == [f"QR_DEMO-00{n}" for n in range(1, 6)]
        statuses = [ledger.get(k).status for k in keys]
        assert statuses == [
            BatchStatus.COLLECTED,
            BatchStatus.PROCESSED,
            BatchStatus.TESTED,
            BatchStatus.APPROVED,
            BatchStatus.REJECTED,
        ]

    def test_rerun_creates_nothing(self, ledger):
        seed_demo_batches(3, ledger=ledger)
        assert seed_demo_batches(3, ledger=ledger) == []
        assert len(ledger.scan_all()) == 3

    def test_custom_prefix(self, ledger):
        assert seed_demo_batches(1, ledger=ledger, prefix="FAIR") == ["QR_FAIR-001"]


class TestCLI:
    def test_seed_command(self, app, ledger):
        result = app.test_cli_runner().invoke(args=["seed-demo-batches", "--count", "5"])
        assert result.exit_code == 0
        assert "Seeded 5 demo batches." in result.output
        assert "QR_DEMO-005" in result.output
        assert len(ledger.scan_all()) == 5

    def test_ledger_status_command(self, app):
        result = app.test_cli_runner().invoke(args=["ledger-status"])
        assert result.exit_code == 0
        assert "primaryMode" in result.output
        assert "memory" in result.output
