"""Tests for CLI commands."""

import asyncio
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from tabstash.cli import cli
from tabstash.config import ConfigManager
from tabstash.core.services import open_services
from tabstash.models.config import AppConfig
from tabstash.models.tabs import TabSummary


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Drop variables that load_dotenv or serve leave behind."""
    for key in ("TABSTASH_API_TOKEN", "TABSTASH_CONFIG_DIR"):
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)


@pytest.fixture
def config_dir():
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir) / ".tabstash"


def _write_valid_setup(config_dir: Path) -> None:
    """Create a minimal valid setup for doctor checks."""
    cm = ConfigManager(config_dir)
    cm.save_app_config(
        AppConfig(
            require_auth=True,
            allowed_origins=["chrome-extension://akegejjndolaellmldpmchibfhjcldgi"],
            enrichment_delay_seconds=0.0,
        )
    )
    cm.create_env_file("local-test-token")


def _stash(config_dir: Path, *urls: str) -> None:
    async def run():
        cm = ConfigManager(config_dir)
        services = await open_services(cm, cm.load_app_config())
        try:
            await services.items.stash_tabs(
                [
                    TabSummary(id=i, url=url, title=f"Page {i}", fav_icon_url="https://i.test/f.ico")
                    for i, url in enumerate(urls)
                ],
                tags=["cli"],
            )
        finally:
            await services.aclose()

    asyncio.run(run())


class TestCliInit:
    """Test tabstash init command."""

    def test_init_creates_files(self, config_dir):
        runner = CliRunner()

        result = runner.invoke(cli, ["init", "--config-dir", str(config_dir)])

        assert result.exit_code == 0
        assert "[SUCCESS] Tab Stash initialized successfully!" in result.output
        assert "API token:" in result.output

        cm = ConfigManager(config_dir)
        assert cm.env_file.exists()
        assert cm.load_app_config().require_auth is True

    def test_init_with_options(self, config_dir):
        store = config_dir.parent / "data" / "tree.yaml"
        runner = CliRunner()

        result = runner.invoke(
            cli,
            [
                "init",
                "--config-dir", str(config_dir),
                "--api-token", "given",
                "--store-path", str(store),
                "--no-require-auth",
            ],
        )

        assert result.exit_code == 0
        assert "API token:" not in result.output
        assert store.parent.is_dir()

        cm = ConfigManager(config_dir)
        config = cm.load_app_config()
        assert config.store_path == str(store)
        assert config.require_auth is False
        assert "TABSTASH_API_TOKEN=given" in cm.env_file.read_text()


class TestCliDoctor:
    """Test tabstash doctor command."""

    def test_doctor_passes_with_valid_setup(self, config_dir):
        _write_valid_setup(config_dir)
        runner = CliRunner()

        result = runner.invoke(cli, ["doctor", "--config-dir", str(config_dir)])

        assert result.exit_code == 0
        assert "[PASS] config.yaml parsed successfully" in result.output
        assert "[PASS] Bookmark tree file is accessible" in result.output
        assert "[PASS] TABSTASH_API_TOKEN looks configured" in result.output

    def test_doctor_fails_when_token_missing(self, config_dir):
        _write_valid_setup(config_dir)
        cm = ConfigManager(config_dir)
        cm.env_file.write_text("# no token\n", encoding="utf-8")
        runner = CliRunner()

        result = runner.invoke(cli, ["doctor", "--config-dir", str(config_dir)])

        assert result.exit_code == 1
        assert "TABSTASH_API_TOKEN is missing" in result.output

    def test_doctor_warns_without_auth(self, config_dir):
        ConfigManager(config_dir).save_app_config(AppConfig(require_auth=False))
        runner = CliRunner()

        result = runner.invoke(cli, ["doctor", "--config-dir", str(config_dir)])

        assert result.exit_code == 0
        assert "[WARN] Command endpoint accepts requests without a token" in result.output

    def test_doctor_fails_on_placeholder_origin(self, config_dir):
        _write_valid_setup(config_dir)
        cm = ConfigManager(config_dir)
        cm.save_app_config(
            AppConfig(require_auth=True, allowed_origins=["chrome-extension://<your-extension-id>"])
        )
        runner = CliRunner()

        result = runner.invoke(cli, ["doctor", "--config-dir", str(config_dir)])

        assert result.exit_code == 1
        assert "placeholder" in result.output

    def test_doctor_fails_without_config(self, config_dir):
        runner = CliRunner()

        result = runner.invoke(cli, ["doctor", "--config-dir", str(config_dir)])

        assert result.exit_code == 1
        assert "Missing config file" in result.output


class TestCliServe:
    """Test tabstash serve command."""

    def test_serve_runs_uvicorn(self, config_dir):
        _write_valid_setup(config_dir)
        runner = CliRunner()

        with patch("tabstash.cli.uvicorn.run") as run:
            result = runner.invoke(
                cli, ["serve", "--config-dir", str(config_dir), "--port", "9123"]
            )

        assert result.exit_code == 0
        run.assert_called_once()
        args, kwargs = run.call_args
        assert args == ("tabstash.api:app",)
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 9123
        assert kwargs["log_level"] == "info"

    def test_serve_without_config(self, config_dir):
        runner = CliRunner()

        with patch("tabstash.cli.uvicorn.run") as run:
            result = runner.invoke(cli, ["serve", "--config-dir", str(config_dir)])

        assert result.exit_code == 1
        assert "Configuration not found" in result.output
        run.assert_not_called()


class TestCliItems:
    """Test the list and enrich commands against a tree file."""

    def test_list_shows_stashed_items(self, config_dir):
        _write_valid_setup(config_dir)
        _stash(config_dir, "https://a.test/", "https://b.test/")
        runner = CliRunner()

        result = runner.invoke(cli, ["list", "--config-dir", str(config_dir)])

        assert result.exit_code == 0
        assert "https://a.test/ [cli]" in result.output
        assert "https://b.test/ [cli]" in result.output
        assert "2 item(s)" in result.output

    def test_list_search_and_limit(self, config_dir):
        _write_valid_setup(config_dir)
        _stash(config_dir, "https://a.test/", "https://b.test/")
        runner = CliRunner()

        searched = runner.invoke(
            cli, ["list", "--config-dir", str(config_dir), "--search", "b.test"]
        )
        limited = runner.invoke(cli, ["list", "--config-dir", str(config_dir), "--limit", "1"])
        unlimited = runner.invoke(cli, ["list", "--config-dir", str(config_dir), "--limit", "0"])

        assert "1 item(s)" in searched.output
        assert "https://b.test/" in searched.output
        assert "1 item(s)" in limited.output
        assert "2 item(s)" in unlimited.output

    def test_list_without_config(self, config_dir):
        runner = CliRunner()

        result = runner.invoke(cli, ["list", "--config-dir", str(config_dir)])

        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_enrich_all_items(self, config_dir):
        _write_valid_setup(config_dir)
        _stash(config_dir, "https://a.test/", "https://b.test/")
        runner = CliRunner()

        process = AsyncMock(return_value=True)
        with patch(
            "tabstash.core.metadata_enricher.MetadataEnricher.process_item", process
        ):
            result = runner.invoke(cli, ["enrich", "--config-dir", str(config_dir)])

        assert result.exit_code == 0
        assert "Refreshed metadata for 2 item(s)" in result.output
        assert process.await_count == 2
