"""lockwright: resolve, lock and install Python dependencies reproducibly.

Command line driver over the resolver, lock manager, package cache and
installer. Every subcommand returns an ExitCodes member; errors from the
engine are mapped to exit codes here and nowhere else.
"""

import json
import logging
import os
import sys

from args import parse_args
from cli_config import apply_cli_overrides
from common.errors import (
    CacheIntegrityViolation,
    CacheLockTimeout,
    IncompatibleLockFormat,
    InstallError,
    LockParseError,
    MetadataUnavailable,
    ResolutionBudgetExceeded,
    TransportError,
    Unsatisfiable,
)
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from constants import Constants, ExitCodes, load_settings
from installer import Installer
from lockfile import LockManager
from metadata import AiohttpTransport, MetadataProvider, RequestsTransport
from pkgcache import GCPolicy, PackageCache
from resolver import Resolver, ResolverConfig, verify_graph
from versioning.models import InterpreterDescriptor
from versioning.parser import load_requirements_file, parse_requirements

logger = logging.getLogger(__name__)

# Most specific first: the first matching entry wins
_ERROR_EXIT_CODES = (
    (Unsatisfiable, ExitCodes.UNSATISFIABLE),
    (ResolutionBudgetExceeded, ExitCodes.BUDGET_EXCEEDED),
    (CacheIntegrityViolation, ExitCodes.INTEGRITY_ERROR),
    (IncompatibleLockFormat, ExitCodes.LOCK_FORMAT_ERROR),
    (LockParseError, ExitCodes.LOCK_FORMAT_ERROR),
    (MetadataUnavailable, ExitCodes.CONNECTION_ERROR),
    (TransportError, ExitCodes.CONNECTION_ERROR),
    (CacheLockTimeout, ExitCodes.FILE_ERROR),
    (InstallError, ExitCodes.FILE_ERROR),
    (OSError, ExitCodes.FILE_ERROR),
    (ValueError, ExitCodes.FILE_ERROR),
)


def exit_code_for(exc: BaseException) -> ExitCodes:
    for kind, code in _ERROR_EXIT_CODES:
        if isinstance(exc, kind):
            return code
    raise exc


def load_roots(args):
    """Root requirements from -p flags or a requirements file."""
    if getattr(args, "PACKAGES", None):
        return parse_requirements(args.PACKAGES)
    path = getattr(args, "REQUIREMENTS", None) or Constants.REQUIREMENTS_FILE
    logger.info("Reading root requirements from %s", path)
    return load_requirements_file(path)


def _lock_path(args) -> str:
    return getattr(args, "LOCK_FILE", None) or Constants.LOCK_FILE


def _transport(args):
    if getattr(args, "ASYNC_TRANSPORT", False):
        return AiohttpTransport()
    return RequestsTransport()


def _cache() -> PackageCache:
    return PackageCache(Constants.CACHE_DIR)


def cmd_lock(args) -> ExitCodes:
    roots = load_roots(args)
    interpreter = InterpreterDescriptor.current()
    cache = _cache()
    provider = MetadataProvider(cache, _transport(args), interpreter)
    resolver = Resolver(provider, interpreter, ResolverConfig.from_constants())
    manager = LockManager(interpreter)
    path = _lock_path(args)

    if getattr(args, "FORCE", False):
        existing = manager.load(path)
        preferences = {n.name: n.version for n in existing.graph} if existing is not None else {}
        record = manager.write(resolver.resolve(roots, preferences=preferences), roots)
        manager.save(record, path)
    else:
        record, written = manager.ensure_locked(roots, resolver, path)
        if not written:
            return ExitCodes.SUCCESS
    for node in record.graph:
        logger.info("  %s %s", node.name, node.version)
    return ExitCodes.SUCCESS


def cmd_check(args) -> ExitCodes:
    roots = load_roots(args)
    manager = LockManager(InterpreterDescriptor.current())
    path = _lock_path(args)
    record = manager.load(path)
    if record is None:
        logger.error("No lock file at %s", path)
        return ExitCodes.LOCK_STALE
    verdict = manager.validate(record, roots)
    if verdict.is_fresh:
        logger.info("Lock %s is up to date", path)
        return ExitCodes.SUCCESS
    logger.warning("Lock %s is stale: %s", path, verdict.reason)
    return ExitCodes.LOCK_STALE


def cmd_install(args) -> ExitCodes:
    interpreter = InterpreterDescriptor.current()
    manager = LockManager(interpreter)
    path = _lock_path(args)
    record = manager.load(path)
    if record is None:
        logger.error("No lock file at %s; run 'lockwright lock' first", path)
        return ExitCodes.FILE_ERROR
    if record.interpreter != interpreter.key():
        logger.warning("Lock %s was written for %s; installing for %s", path, record.interpreter, interpreter.key())
    problems = verify_graph(record.graph, parse_requirements(record.roots), interpreter)
    if problems:
        for problem in problems:
            logger.error("Lock %s is inconsistent: %s", path, problem)
        return ExitCodes.LOCK_FORMAT_ERROR
    installer = Installer(_cache(), _transport(args), interpreter)
    report = installer.install(record.graph, args.TARGET)
    logger.info("Installed %d, unchanged %d, removed %d packages in %s",
                len(report.installed), len(report.skipped), len(report.removed), report.target)
    return ExitCodes.SUCCESS


def cmd_gc(args) -> ExitCodes:
    manager = LockManager(InterpreterDescriptor.current())
    paths = list(args.LOCK_FILES)
    if not paths and os.path.isfile(Constants.LOCK_FILE):
        paths.append(Constants.LOCK_FILE)
    records = [r for r in (manager.load(p) for p in paths) if r is not None]
    policy = GCPolicy.from_records(records, float(Constants.CACHE_RETENTION_DAYS))
    reclaimed = _cache().gc(policy)
    logger.info("Reclaimed %d bytes (%d entries pinned by %d lock files)", reclaimed, len(policy.pinned), len(records))
    return ExitCodes.SUCCESS


def cmd_cache_stats(args) -> ExitCodes:  # pylint: disable=unused-argument
    print(json.dumps(_cache().stats(), indent=2, sort_keys=True))
    return ExitCodes.SUCCESS


COMMANDS = {
    "lock": cmd_lock,
    "check": cmd_check,
    "install": cmd_install,
    "gc": cmd_gc,
    "cache-stats": cmd_cache_stats,
}


def run(argv=None) -> ExitCodes:
    """Parse arguments, configure, and run one subcommand."""
    args = parse_args(argv)
    load_settings(args.CONFIG)
    apply_cli_overrides(args)
    configure_logging(args.LOG_LEVEL, args.LOG_FILE)
    if is_debug_enabled(logger):
        logger.debug("CLI start", extra=extra_context(
            event="function_entry", component="cli", action=args.COMMAND))
    try:
        return COMMANDS[args.COMMAND](args)
    except Unsatisfiable as exc:
        logger.error("%s", exc)
        return ExitCodes.UNSATISFIABLE
    except (IncompatibleLockFormat, LockParseError) as exc:
        logger.error("Cannot read lock file: %s", exc)
        return ExitCodes.LOCK_FORMAT_ERROR
    except (ResolutionBudgetExceeded, CacheIntegrityViolation, MetadataUnavailable, TransportError,
            CacheLockTimeout, InstallError, OSError, ValueError) as exc:
        logger.error("%s", exc)
        return exit_code_for(exc)


def main():
    """Main function of the program."""
    sys.exit(run().value)


if __name__ == "__main__":
    main()
