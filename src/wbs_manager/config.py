"""
Runtime configuration for the WBS task manager.

Settings come from environment variables and can be overridden by CLI flags:

- WBS_MCP_DATA_DIR: base directory, database lives at <base>/data/wbs.db
- WBS_MCP_DB_PATH: full database path, wins over WBS_MCP_DATA_DIR
- WBS_MCP_LOG_LEVEL: logging level name (default INFO)
- WBS_MCP_SERVER_NAME: name reported in serverInfo
"""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_SERVER_NAME = "wbs-mcp-server"
SERVER_VERSION = "0.1.0"
DB_RELATIVE_PATH = Path("data") / "wbs.db"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class WbsConfig:
    database_path: Path
    log_level: str = "INFO"
    server_name: str = DEFAULT_SERVER_NAME
    server_version: str = SERVER_VERSION


def resolve_database_path(data_dir: Optional[str] = None, db_path: Optional[str] = None) -> Path:
    """Resolve the database file location from explicit values or the environment."""
    explicit = db_path or os.getenv("WBS_MCP_DB_PATH")
    if explicit and explicit.strip():
        return Path(explicit.strip()).expanduser()

    base = data_dir or os.getenv("WBS_MCP_DATA_DIR")
    if base and base.strip():
        base_dir = Path(base.strip()).expanduser()
    else:
        base_dir = Path.cwd()
    return base_dir / DB_RELATIVE_PATH


def load_config(
    data_dir: Optional[str] = None,
    db_path: Optional[str] = None,
    log_level: Optional[str] = None,
) -> WbsConfig:
    """Build the configuration, letting explicit arguments win over the environment."""
    level = (log_level or os.getenv("WBS_MCP_LOG_LEVEL") or "INFO").upper()
    server_name = os.getenv("WBS_MCP_SERVER_NAME") or DEFAULT_SERVER_NAME
    return WbsConfig(
        database_path=resolve_database_path(data_dir, db_path),
        log_level=level,
        server_name=server_name,
    )


def configure_logging(level: str = "INFO") -> None:
    """
    Route all logging to stderr.

    stdout is reserved for the stdio transport, so nothing may log there.
    """
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(level=numeric, format=LOG_FORMAT, stream=sys.stderr, force=True)
