"""CLI configuration overrides for runtime tunables.

Kept out of lockwright.py to keep the entrypoint slim. CLI flags have the
highest precedence: defaults, then the YAML file, then LOCKWRIGHT_*
environment variables, then these overrides.
"""

from __future__ import annotations

import logging
import os

from constants import Constants

logger = logging.getLogger(__name__)

# argparse dest -> Constants attribute
_OVERRIDES = {
    "INDEX_URL": "INDEX_URL",
    "TIMEOUT": "REQUEST_TIMEOUT",
    "CACHE_DIR": "CACHE_DIR",
    "MAX_STEPS": "RESOLVER_MAX_STEPS",
    "EXTRAS_POLICY": "EXTRAS_POLICY",
    "RETENTION_DAYS": "CACHE_RETENTION_DAYS",
}


def apply_cli_overrides(args) -> None:
    """Copy explicitly given CLI flags onto Constants."""
    for dest, attr in _OVERRIDES.items():
        value = getattr(args, dest, None)
        if value is None:
            continue
        if attr == "CACHE_DIR":
            value = os.path.expanduser(value)
        setattr(Constants, attr, value)
        logger.debug("CLI override %s=%r", attr, value)
    if getattr(args, "ALLOW_PRERELEASES", False):
        Constants.RESOLVER_ALLOW_PRERELEASES = True
