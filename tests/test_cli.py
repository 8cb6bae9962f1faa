"""
Tests for the command-line interface.
"""

import pytest
from click.testing import CliRunner

from kairan_bridge import cli as cli_module
from kairan_bridge.cli import cli
from kairan_bridge.store.repository import BridgeDB, QueuedBroadcast


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(cli_module, "configure_logging", lambda *a, **kw: None)
    for var in ("LINE_ACCESS_TOKEN", "DISCORD_WEBHOOK_URL", "DISCORD_BOT_TOKEN", "DISCORD_CHANNEL_ID"):
        monkeypatch.delenv(var, raising=False)


class TestCli:
    def setup_method(self):
        self.runner = CliRunner()

    def _invoke(self, db_url, *args):
        return self.runner.invoke(cli, ["--db", db_url, *args])

    def test_register_and_stats(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'cli.db'}"
        result = self._invoke(url, "register", "-u", "U1", "--name", "Tanaka", "-r", "Yakuin")
        assert result.exit_code == 0, result.output
        assert "Tanaka (U1) is now 役員." in result.output

        result = self._invoke(url, "stats")
        assert result.exit_code == 0, result.output
        assert "Total: 1" in result.output

    def test_register_unknown_role(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'cli.db'}"
        result = self._invoke(url, "register", "-u", "U1", "--name", "T", "-r", "Chairman")
        assert result.exit_code != 0
        assert "Unknown role" in result.output

    def test_queue_listing(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'cli.db'}"
        assert "Queue is empty." in self._invoke(url, "queue").output

        BridgeDB(url).enqueue(QueuedBroadcast(sender="Sato", target_role="Member", body="cleanup"))
        result = self._invoke(url, "queue")
        assert "Queued broadcasts (1)" in result.output
        assert "cleanup" in result.output

    def test_add_reply_and_logs(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'cli.db'}"
        result = self._invoke(url, "add-reply", "-k", "ゴミ", "-r", "Tuesday")
        assert result.exit_code == 0
        assert BridgeDB(url).find_auto_reply("ゴミの日") == "Tuesday"
        assert "No log entries." in self._invoke(url, "logs").output

    def test_setup_shows_schedule(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'cli.db'}"
        result = self._invoke(url, "setup")
        assert result.exit_code == 0, result.output
        assert "Quiet hours: 21:00-07:00 (Asia/Tokyo)" in result.output
        assert "every 10 min" in result.output
        assert "daily at 07:05 Asia/Tokyo" in result.output

    def test_flush_empty(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'cli.db'}"
        result = self._invoke(url, "flush")
        assert result.exit_code == 0, result.output
        assert "No queued messages." in result.output

    def test_reset_cursor_without_sync(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'cli.db'}"
        BridgeDB(url).set_cursor("m9")
        result = self._invoke(url, "reset-cursor", "--no-sync")
        assert "Cursor cleared." in result.output
        assert BridgeDB(url).get_cursor() is None

    def test_missing_config_file(self, tmp_path):
        result = self.runner.invoke(cli, ["--config", str(tmp_path / "none.json"), "stats"])
        assert result.exit_code != 0
        assert "not found" in result.output
