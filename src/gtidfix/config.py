# src/gtidfix/config.py

import os
from pathlib import Path

DEFAULT_DEFAULTS_FILE = Path.home() / ".my.cnf"
DEFAULT_SESSION_DIR = Path.home() / ".gtidfix" / "sessions"
DEFAULT_LOG_DIR = Path.home() / ".logs" / "gtidfix"

MONITOR_USER_ENV = "GTIDFIX_MONITOR_USER"
MONITOR_PASSWORD_ENV = "GTIDFIX_MONITOR_PASSWORD"
LOG_DISABLED_ENV = "GTIDFIX_LOG_DISABLED"
LOG_DIR_ENV = "GTIDFIX_LOG_DIR"
LOG_FILE_ENV = "GTIDFIX_LOG_FILE"


def find_defaults_file(defaults_file=None):
    """
    Return a Path to the MySQL option file used for the root connection.
    If defaults_file is not provided, use ~/.my.cnf.
    """
    if defaults_file:
        return Path(os.path.expanduser(str(defaults_file)))
    return DEFAULT_DEFAULTS_FILE


def find_session_dir(session_dir=None):
    """
    Directory for repair session records.
    Default: ~/.gtidfix/sessions
    """
    if session_dir:
        return Path(os.path.expanduser(str(session_dir)))
    return DEFAULT_SESSION_DIR


def find_log_path():
    """
    Resolve the CLI log file, or None when logging to file is disabled.
    GTIDFIX_LOG_FILE wins over GTIDFIX_LOG_DIR; default ~/.logs/gtidfix/gtidfix.log.
    """
    if os.environ.get(LOG_DISABLED_ENV) == "1":
        return None
    log_file = os.environ.get(LOG_FILE_ENV)
    if log_file:
        return Path(os.path.expanduser(log_file))
    log_dir = os.environ.get(LOG_DIR_ENV)
    base_dir = Path(os.path.expanduser(log_dir)) if log_dir else DEFAULT_LOG_DIR
    return base_dir / "gtidfix.log"
