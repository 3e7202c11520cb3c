# -*- encoding: utf-8 -*-
"""
ZK Email SDK
zkemail_sdk.config module

SDK configuration loaded from environment variables with sensible defaults,
plus the logging setup used by applications embedding the SDK.
"""

import logging
import os

# Default configuration values
DEFAULTS = {
    "ZKEMAIL_BASE_URL": "https://conductor.zk.email",
    "ZKEMAIL_API_KEY": "",
    "ZKEMAIL_ARCHIVE_URL": "https://archive.zk.email",
    "ZKEMAIL_CHAIN_RPC_URL": "https://sepolia.base.org",
    "ZKEMAIL_SNARKJS_BIN": "snarkjs",
    "ZKEMAIL_HTTP_TIMEOUT": "30",
    "ZKEMAIL_REMOTE_INITIAL_DELAY": "6",
    "ZKEMAIL_STATUS_INITIAL_BACKOFF": "2",
    "ZKEMAIL_STATUS_MAX_BACKOFF": "10",
    "ZKEMAIL_LOG_LEVEL": "WARNING",
}

_FLOAT_KEYS = (
    "ZKEMAIL_HTTP_TIMEOUT",
    "ZKEMAIL_REMOTE_INITIAL_DELAY",
    "ZKEMAIL_STATUS_INITIAL_BACKOFF",
    "ZKEMAIL_STATUS_MAX_BACKOFF",
)

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def load_config(overrides=None):
    """Load SDK configuration from environment variables.

    Args:
        overrides: Optional dict of values that take precedence over both
                   the environment and DEFAULTS.

    Returns:
        dict with all configuration values, numeric entries parsed.
    """
    config = {}
    for key, default in DEFAULTS.items():
        config[key] = os.environ.get(key, default)
    if overrides:
        config.update(overrides)
    for key in _FLOAT_KEYS:
        config[key] = float(config[key])
    config["ZKEMAIL_BASE_URL"] = config["ZKEMAIL_BASE_URL"].rstrip("/")
    config["ZKEMAIL_ARCHIVE_URL"] = config["ZKEMAIL_ARCHIVE_URL"].rstrip("/")
    return config


def configure_logging(level=None):
    """Configure root logging for applications that use the SDK directly.

    Args:
        level: A logging level name or number. Defaults to ZKEMAIL_LOG_LEVEL.
    """
    if level is None:
        level = os.environ.get("ZKEMAIL_LOG_LEVEL", DEFAULTS["ZKEMAIL_LOG_LEVEL"])
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
