"""Tests for the cardlink command line."""

from __future__ import annotations

from click.testing import CliRunner

from cardlink.cli import main
from cardlink.tools.mcp import MCPGateway
from cardlink.types import ToolDefinition


def _clean_env(monkeypatch):
    for name in ("LLM_BASE_URL", "LLM_API_KEY", "LLM_MODEL", "MCP_SERVER_URL"):
        monkeypatch.delenv(name, raising=False)


class TestCli:
    def test_tools_without_server(self, monkeypatch, tmp_path):
        _clean_env(monkeypatch)
        result = CliRunner().invoke(main, ["--config", str(tmp_path / "none.yaml"), "tools"])
        assert result.exit_code == 1
        assert "No MCP server configured" in result.output

    def test_tools_table(self, monkeypatch, tmp_path):
        _clean_env(monkeypatch)

        async def fake_discover(self):
            return [ToolDefinition(
                name="lookup",
                description="Look something up",
                parameters={"type": "object", "properties": {"q": {"type": "string"}}},
            )]

        monkeypatch.setattr(MCPGateway, "discover", fake_discover)
        result = CliRunner().invoke(
            main, ["--config", str(tmp_path / "none.yaml"), "tools", "--mcp", "http://mcp.test"],
        )
        assert result.exit_code == 0
        assert "lookup" in result.output

    def test_ask_without_credentials(self, monkeypatch, tmp_path):
        _clean_env(monkeypatch)
        result = CliRunner().invoke(main, ["--config", str(tmp_path / "none.yaml"), "ask", "Hi"])
        assert result.exit_code == 1
        assert "LLM_API_KEY not configured" in result.output

    def test_database_backed_commands(self, monkeypatch, tmp_path):
        _clean_env(monkeypatch)
        config = tmp_path / "cardlink.yaml"
        config.write_text(f"database: {tmp_path / 'cards.db'}\n")
        runner = CliRunner()

        created = runner.invoke(main, ["--config", str(config), "new-profile", "Jane Doe", "Partner"])
        assert created.exit_code == 0
        assert "Created profile 1" in created.output
        assert (tmp_path / "cards.db").exists()

        question = runner.invoke(main, ["--config", str(config), "onboard", "--profile", "1"])
        assert question.exit_code == 0
        assert "introduce yourself" in question.output

        missing = runner.invoke(main, ["--config", str(config), "assist", "Hi", "--profile", "2"])
        assert missing.exit_code == 1
        assert "Profile 2 not found" in missing.output
