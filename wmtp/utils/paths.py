"""Centralized path definitions for the WMTP client.

All on-disk state lives under a single base directory, ``~/.wmtp`` by
default. Set ``WMTP_HOME`` to relocate it (tests point it at a temporary
directory).
"""

import os
from pathlib import Path

# Base application directory
WMTP_DIR = Path(os.environ.get("WMTP_HOME", Path.home() / ".wmtp"))

# Subdirectories
LOGS_DIR = WMTP_DIR / "logs"
SECRETS_DIR = WMTP_DIR / "secrets"

# Specific files
CONFIG_PATH = WMTP_DIR / "config.json"
MASTER_KEY_PATH = SECRETS_DIR / ".master.key"
SESSIONS_PATH = SECRETS_DIR / "sessions.enc"
