"""Argument parsing functionality for lockwright."""

import argparse

from constants import Constants, ExtrasPolicy


def _add_common(parser):
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to configuration file (YAML)",
                        action="store",
                        type=str)
    parser.add_argument("--cache-dir",
                        dest="CACHE_DIR",
                        help="Package cache directory (default: %s)" % Constants.CACHE_DIR,
                        action="store",
                        type=str)


def _add_roots(parser):
    input_group = parser.add_mutually_exclusive_group()
    input_group.add_argument("-p", "--package",
                             dest="PACKAGES",
                             help="Root requirement (PEP 508), can be used multiple times",
                             action="append",
                             type=str)
    input_group.add_argument("-r", "--requirements",
                             dest="REQUIREMENTS",
                             help="Read root requirements from a requirements file (default: %s)"
                             % Constants.REQUIREMENTS_FILE,
                             action="store",
                             type=str)


def _add_lock_path(parser):
    parser.add_argument("-l", "--lock",
                        dest="LOCK_FILE",
                        help="Lock file path (default: %s)" % Constants.LOCK_FILE,
                        action="store",
                        type=str)


def _add_network(parser):
    parser.add_argument("--index-url",
                        dest="INDEX_URL",
                        help="Package index JSON API base URL",
                        action="store",
                        type=str)
    parser.add_argument("--timeout",
                        dest="TIMEOUT",
                        help="Timeout in seconds for each fetch",
                        action="store",
                        type=float)
    parser.add_argument("--async-transport",
                        dest="ASYNC_TRANSPORT",
                        help="Use the aiohttp transport for batched metadata fetches",
                        action="store_true")


def build_parser():
    """Build the top-level parser with one subcommand per operation."""
    parser = argparse.ArgumentParser(
        prog="lockwright",
        description="lockwright - dependency resolution and reproducible lock files",
        add_help=True,
    )
    sub = parser.add_subparsers(dest="COMMAND", metavar="COMMAND")
    sub.required = True

    lock = sub.add_parser("lock", help="Resolve root requirements and write the lock file")
    _add_common(lock)
    _add_roots(lock)
    _add_lock_path(lock)
    _add_network(lock)
    lock.add_argument("--max-steps",
                      dest="MAX_STEPS",
                      help="Resolver step budget",
                      action="store",
                      type=int)
    lock.add_argument("--pre",
                      dest="ALLOW_PRERELEASES",
                      help="Allow pre-release versions",
                      action="store_true")
    lock.add_argument("--extras-policy",
                      dest="EXTRAS_POLICY",
                      help="How to combine different extras requested for one package",
                      action="store",
                      type=str.lower,
                      choices=[p.value for p in ExtrasPolicy])
    lock.add_argument("--force",
                      dest="FORCE",
                      help="Re-resolve even when the lock is up to date",
                      action="store_true")

    check = sub.add_parser("check", help="Exit non-zero when the lock file is stale")
    _add_common(check)
    _add_roots(check)
    _add_lock_path(check)

    install = sub.add_parser("install", help="Install the locked packages into a target directory")
    _add_common(install)
    _add_lock_path(install)
    _add_network(install)
    install.add_argument("-t", "--target",
                         dest="TARGET",
                         help="Target environment directory",
                         action="store",
                         type=str,
                         required=True)

    gc = sub.add_parser("gc", help="Remove old cache entries not needed by the given locks")
    _add_common(gc)
    gc.add_argument("-l", "--lock",
                    dest="LOCK_FILES",
                    help="Lock file whose entries must be kept, can be used multiple times",
                    action="append",
                    type=str,
                    default=[])
    gc.add_argument("--retention-days",
                    dest="RETENTION_DAYS",
                    help="Keep entries accessed within this many days",
                    action="store",
                    type=float)

    stats = sub.add_parser("cache-stats", help="Show package cache statistics")
    _add_common(stats)

    return parser


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    return build_parser().parse_args(argv)
