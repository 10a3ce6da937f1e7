"""
Configuration settings for the topic index manager.

Centralized configuration for the remote service connection, reconciliation
pacing and command dispatch.
"""

import os
import shlex
from pathlib import Path

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
DATA_ROOT = PROJECT_ROOT / "data"
OUTPUT_ROOT = PROJECT_ROOT / "output"
CONFIG_FILE = Path(os.getenv("TOPICINDEX_CONFIG", Path.cwd() / "wiki-index-config.json"))

# Remote service credentials
LARK_APP_ID = os.getenv("LARK_APP_ID", "")
LARK_APP_SECRET = os.getenv("LARK_APP_SECRET", "")
LANGUAGE = os.getenv("TOPICINDEX_LANGUAGE", "en")

# Command that starts the remote content service in stdio mode.
# Credentials are appended as --app-id/--app-secret/--language.
SERVER_COMMAND = shlex.split(os.getenv("TOPICINDEX_SERVER_COMMAND", "lark-mcp mcp --mode stdio"))

# Transport
REQUEST_TIMEOUT_SECONDS = 30.0

# Reconciliation
LIST_PAGE_SIZE = 500  # Children listed per request when loading existing links
MAX_LIST_PAGES = 20
ITEM_DELAY_SECONDS = 0.5  # After each link creation
PAGE_DELAY_SECONDS = 2.0  # Between index pages in a full run
RATE_LIMITER = "fixed"  # "fixed" or "token_bucket"
TOKEN_BUCKET_RATE = 2.0  # Operations per second
TOKEN_BUCKET_CAPACITY = 5

# Hierarchy mapping
MAX_TREE_DEPTH = 10
MAX_TREE_NODES = 5000

# Command dispatch: "continue" runs every chain step and reports each,
# "abort" stops at the first failure and rolls back completed steps
CHAIN_FAILURE_POLICY = "continue"

# Logging
LOG_LEVEL = "INFO"  # DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE = "topicindex.log"


def server_command() -> list:
    """Full remote service command line including credentials."""
    command = list(SERVER_COMMAND)
    if LARK_APP_ID:
        command += ["--app-id", LARK_APP_ID]
    if LARK_APP_SECRET:
        command += ["--app-secret", LARK_APP_SECRET]
    if LANGUAGE:
        command += ["--language", LANGUAGE]
    return command
