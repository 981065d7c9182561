"""Command-line interface for Tab Stash."""

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
import httpx
import uvicorn

CONFIG_DIR_HELP = "Configuration directory (default: ~/.tabstash)"


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.group()
@click.version_option(version="0.1.0", prog_name="tabstash")
def cli():
    """Tab Stash - stashed tabs and folders kept in a bookmark tree."""
    pass


@cli.command()
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help=CONFIG_DIR_HELP,
)
@click.option(
    "--api-token",
    type=str,
    default=None,
    help="Token for the command endpoint (random when omitted)",
)
@click.option(
    "--store-path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="YAML file holding the bookmark tree (default: <config-dir>/bookmarks.yaml)",
)
@click.option(
    "--require-auth/--no-require-auth",
    default=True,
    show_default=True,
    help="Require the API token on the command endpoint",
)
def init(
    config_dir: Optional[Path],
    api_token: Optional[str],
    store_path: Optional[Path],
    require_auth: bool,
):
    """Initialize Tab Stash configuration.

    Creates the configuration directory, config.yaml and a .env file with the
    command endpoint token.
    """
    from .config import ConfigManager, ConfigError
    from .models.config import AppConfig

    try:
        cm = ConfigManager(config_dir)

        click.echo(f"Initializing Tab Stash at {cm.config_dir}...")
        cm.config_dir.mkdir(parents=True, exist_ok=True)

        token = cm.create_env_file(api_token)
        click.echo("[OK] Created .env file")

        app_config = AppConfig(
            store_path=str(store_path) if store_path else None,
            require_auth=require_auth,
        )
        resolved_store = cm.get_store_path(app_config)
        resolved_store.parent.mkdir(parents=True, exist_ok=True)

        cm.save_app_config(app_config)
        click.echo("[OK] Created config.yaml")

        click.echo("\n" + "=" * 60)
        click.echo("[SUCCESS] Tab Stash initialized successfully!")
        click.echo("=" * 60)

        click.echo(f"\nConfiguration directory: {cm.config_dir}")
        click.echo(f"Bookmark tree file: {resolved_store}")
        if require_auth and not api_token:
            click.echo(f"API token: {token}")
            click.echo("          Paste it into the extension options page")
        click.echo("\nStart the server with: tabstash serve")

    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option(
    "--host",
    type=str,
    default=None,
    help="Host to bind (default: from config.yaml, else 127.0.0.1)",
)
@click.option(
    "--port",
    type=int,
    default=None,
    help="Port to bind (default: from config.yaml, else 8000)",
)
@click.option(
    "--reload",
    is_flag=True,
    default=False,
    help="Enable auto-reload for development",
)
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help=CONFIG_DIR_HELP,
)
def serve(host: Optional[str], port: Optional[int], reload: bool, config_dir: Optional[Path]):
    """Start the Tab Stash API server."""
    from .config import ConfigManager, ConfigError

    try:
        cm = ConfigManager(config_dir)

        if not cm.config_file.exists():
            click.echo("Error: Configuration not found", err=True)
            click.echo(f"Run 'tabstash init' to create configuration at {cm.config_dir}", err=True)
            sys.exit(1)

        try:
            app_config = cm.load_app_config()
            cm.load_env_settings()
        except ConfigError as e:
            click.echo(f"Configuration error: {e}", err=True)
            sys.exit(1)

        # The app reloads config in its own lifespan
        if config_dir:
            os.environ["TABSTASH_CONFIG_DIR"] = str(config_dir)

        host = host or app_config.host
        port = port or app_config.port or 8000

        click.echo("=" * 60)
        click.echo("Starting Tab Stash API server...")
        click.echo("=" * 60)
        click.echo(f"Config directory: {cm.config_dir}")
        click.echo(f"Bookmark tree file: {cm.get_store_path(app_config)}")
        click.echo(f"Server URL: http://{host}:{port}")
        click.echo(f"API docs: http://{host}:{port}/docs")
        click.echo("=" * 60)
        click.echo("\nPress Ctrl+C to stop the server\n")

        uvicorn.run(
            "tabstash.api:app",
            host=host,
            port=port,
            reload=reload,
            log_level=app_config.log_level.lower(),
        )

    except KeyboardInterrupt:
        click.echo("\n\nShutting down server...")
        sys.exit(0)
    except Exception as e:
        click.echo(f"Error starting server: {e}", err=True)
        sys.exit(1)


@cli.command(name="list")
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help=CONFIG_DIR_HELP,
)
@click.option("--folder", "folder_id", type=str, default=None, help="Folder id, 'trash' or 'archive'")
@click.option("--search", "query", type=str, default=None, help="Filter by text")
@click.option("--limit", type=int, default=50, show_default=True, help="0 lists everything")
def list_items(config_dir: Optional[Path], folder_id: Optional[str], query: Optional[str], limit: int):
    """List stashed items from the bookmark tree file."""
    from .config import ConfigManager, ConfigError
    from .core.services import open_services
    from .core.tree_store import TreeStoreError
    from .models.item import UNSET

    async def run():
        cm = ConfigManager(config_dir)
        app_config = cm.load_app_config()
        services = await open_services(cm, app_config)
        try:
            if query:
                return await services.items.search_items(query, folder_id)
            return await services.items.list_items(
                folder_id=folder_id if folder_id is not None else UNSET,
                limit=limit,
            )
        finally:
            await services.aclose()

    try:
        items = asyncio.run(run())
    except (ConfigError, TreeStoreError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if limit:
        items = items[:limit]
    for item in items:
        tags = f" [{', '.join(item.tags)}]" if item.tags else ""
        click.echo(f"{item.id}\t{item.title}\t{item.url}{tags}")
    click.echo(f"{len(items)} item(s)")


@cli.command()
@click.argument("item_ids", nargs=-1)
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help=CONFIG_DIR_HELP,
)
def enrich(item_ids: Tuple[str, ...], config_dir: Optional[Path]):
    """Re-fetch titles and favicons for ITEM_IDS (all items when none given)."""
    from .config import ConfigManager, ConfigError
    from .core.services import open_services
    from .core.tree_store import TreeStoreError

    async def run() -> int:
        cm = ConfigManager(config_dir)
        app_config = cm.load_app_config()
        _configure_logging(app_config.log_level)
        services = await open_services(cm, app_config)
        try:
            ids = list(item_ids)
            if not ids:
                snapshot = await services.repository.snapshot()
                ids = [entry.item.id for entry in snapshot.entries]
            queued = await services.items.refresh_metadata(ids)
            await services.enricher.wait_idle()
            return queued
        finally:
            await services.aclose()

    try:
        queued = asyncio.run(run())
    except (ConfigError, TreeStoreError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Refreshed metadata for {queued} item(s)")


@cli.command()
@click.option(
    "--config-dir",
    type=click.Path(path_type=Path),
    default=None,
    help=CONFIG_DIR_HELP,
)
@click.option(
    "--api-url",
    type=str,
    default=None,
    help="Optional running API URL to verify (example: http://127.0.0.1:8000)",
)
def doctor(config_dir: Optional[Path], api_url: Optional[str]):
    """Validate local setup and report actionable fixes."""
    from .config import ConfigManager, ConfigError

    cm = ConfigManager(config_dir)
    failures = 0
    warnings = 0
    app_config = None
    env_settings = None

    def report(status: str, message: str, fix: Optional[str] = None) -> None:
        click.echo(f"[{status}] {message}")
        if fix:
            click.echo(f"      Fix: {fix}")

    click.echo("=" * 60)
    click.echo("Tab Stash doctor")
    click.echo("=" * 60)
    click.echo(f"Config directory: {cm.config_dir}")

    if cm.config_file.exists():
        try:
            app_config = cm.load_app_config()
            report("PASS", "config.yaml parsed successfully")
        except ConfigError as e:
            failures += 1
            report("FAIL", f"config.yaml validation failed: {e}")
    else:
        failures += 1
        report("FAIL", f"Missing config file: {cm.config_file}", "Run: tabstash init")

    try:
        env_settings = cm.load_env_settings()
    except ConfigError as e:
        failures += 1
        report("FAIL", f".env validation failed: {e}")

    if app_config is not None:
        store_path = cm.get_store_path(app_config)
        try:
            cm.validate_store_access(store_path)
            report("PASS", f"Bookmark tree file is accessible: {store_path}")
        except ConfigError as e:
            failures += 1
            report("FAIL", f"Bookmark tree file is not accessible: {e}")

        if app_config.require_auth:
            if env_settings is None or not env_settings.tabstash_api_token:
                failures += 1
                report(
                    "FAIL",
                    "Auth is enabled but TABSTASH_API_TOKEN is missing",
                    "Run: tabstash init, or set TABSTASH_API_TOKEN in ~/.tabstash/.env",
                )
            else:
                report("PASS", "TABSTASH_API_TOKEN looks configured")
        else:
            warnings += 1
            report("WARN", "Command endpoint accepts requests without a token")

        placeholder_origins = [
            origin for origin in app_config.allowed_origins if "<" in origin or ">" in origin
        ]
        if placeholder_origins:
            failures += 1
            report(
                "FAIL",
                f"allowed_origins contains placeholder entries: {placeholder_origins}",
                "Replace <your-extension-id> with the real extension ID",
            )

    if api_url:
        health_url = f"{api_url.rstrip('/')}/api/v1/health"
        try:
            response = httpx.get(health_url, timeout=3.0)
            if response.status_code == 200:
                report("PASS", f"Server is reachable: {health_url}")
            else:
                failures += 1
                report(
                    "FAIL",
                    f"Server health check returned HTTP {response.status_code}: {health_url}",
                    "Start server: tabstash serve",
                )
        except httpx.HTTPError as e:
            failures += 1
            report(
                "FAIL",
                f"Server is not reachable at {health_url} ({e})",
                "Start server and ensure API URL matches --api-url",
            )
    else:
        warnings += 1
        report("WARN", "Skipped server reachability check (no --api-url provided)")

    click.echo("-" * 60)
    click.echo(f"Summary: {failures} fail, {warnings} warn")

    if failures:
        sys.exit(1)
    sys.exit(0)


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
