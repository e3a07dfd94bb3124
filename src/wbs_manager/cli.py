"""
Command line entry point for the WBS task manager.

Opens (or creates) the database, optionally wipes it or imports a YAML
work breakdown, then serves the tools over the chosen MCP transport.

Examples:
    wbs-manager                                  # stdio transport, ./data/wbs.db
    wbs-manager --data-dir ~/wbs --log-level DEBUG
    wbs-manager --import-yaml plan.yaml --no-serve
    wbs-manager --mcp-transport http --port 8765
"""

import logging
from pathlib import Path

import click

from .config import configure_logging, load_config
from .database import WbsDatabase, open_database
from .errors import WbsError
from .importer import import_wbs_from_file
from .mcp_server import create_mcp_server

logger = logging.getLogger(__name__)


@click.command()
@click.option("--data-dir", type=click.Path(file_okay=False), default=None,
              help="Base directory; the database lives at <data-dir>/data/wbs.db")
@click.option("--db-path", type=click.Path(dir_okay=False), default=None,
              help="Explicit database file path (overrides --data-dir)")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              default=None, help="Logging level (default from WBS_MCP_LOG_LEVEL or INFO)")
@click.option("--mcp-transport", type=click.Choice(["stdio", "sse", "http"]), default="stdio",
              show_default=True, help="MCP transport to serve")
@click.option("--host", default="127.0.0.1", show_default=True, help="Host for sse/http transports")
@click.option("--port", type=int, default=8765, show_default=True, help="Port for sse/http transports")
@click.option("--import-yaml", "import_yaml", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Import a YAML work breakdown before serving")
@click.option("--reset", is_flag=True, help="Delete the existing database before starting")
@click.option("--no-serve", is_flag=True, help="Exit after initialization/import instead of serving")
def main(data_dir, db_path, log_level, mcp_transport, host, port, import_yaml, reset, no_serve):
    """Serve the WBS task manager over MCP."""
    config = load_config(data_dir=data_dir, db_path=db_path, log_level=log_level)
    configure_logging(config.log_level)

    try:
        database = open_database(config)
        if reset:
            database.close_and_reset()
            database = WbsDatabase(str(config.database_path))
    except WbsError as e:
        raise click.ClickException(f"Cannot open database: {e}")

    try:
        if import_yaml:
            stats = import_wbs_from_file(database, import_yaml)
            click.echo(
                f"Imported {stats['tasks_created']} task(s) and "
                f"{stats['artifacts_created']} new artifact(s) from {Path(import_yaml).name}",
                err=True,
            )
    except (WbsError, FileNotFoundError) as e:
        logger.error(f"Import failed: {e}")
        database.close()
        raise click.ClickException(str(e))

    if no_serve:
        database.close()
        return

    server = create_mcp_server(database, server_name=config.server_name, server_version=config.server_version)
    try:
        server.start_server_sync(transport=mcp_transport, host=host, port=port)
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        database.close()


if __name__ == "__main__":
    main()
