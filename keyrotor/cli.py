"""
keyrotor CLI: entry point for all operations.

Usage:
    keyrotor rotate [SET ...]     # Rotate secrets that are due
    keyrotor disable [SET ...]    # Disable superseded credentials
    keyrotor check                # Validate the configuration file
    keyrotor plugins              # List registered plugin packages
    keyrotor version              # Show version

Exit codes: 0 on success, 1 if any secret failed or a client could not be
built, 2 if the configuration is invalid or a named secret set is unknown.
"""

from __future__ import annotations

import argparse
import contextlib
import logging
import signal
import sys
import threading
from collections.abc import Iterator
from datetime import timedelta
from pathlib import Path

from keyrotor.config import get_settings, load_config, parse_duration, prepare
from keyrotor.disable.interface import DisableClient
from keyrotor.disable.manager import DisableManager
from keyrotor.errors import AggregateError, ConfigError, PluginError
from keyrotor.models import BatchResult, RotorConfig, SecretSet
from keyrotor.plugin.manager import PluginManager
from keyrotor.plugin.registry import Registry, default_registry
from keyrotor.rotate.interface import RotationClient
from keyrotor.rotate.manager import RotationManager

logger = logging.getLogger(__name__)


def _duration(value: str) -> timedelta:
    try:
        return parse_duration(value)
    except ConfigError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _pick(flag: timedelta | None, env: timedelta | None) -> timedelta | None:
    return flag if flag is not None else env


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="keyrotor",
        description="keyrotor: rotate credentials and keep every copy of them in sync.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("--config", "-c", type=Path, help="Configuration file (default: ./keyrotor.yaml)")
    parser.add_argument(
        "--dry-run", action="store_true", help="Report what would change without changing it"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument(
        "--rotate-after", type=_duration, help="Override the default rotation interval (e.g. 168h)"
    )
    parser.add_argument(
        "--disable-after", type=_duration, help="Override the default disable interval (e.g. 48h)"
    )

    subparsers = parser.add_subparsers(dest="command")

    rotate_parser = subparsers.add_parser("rotate", help="Rotate secrets that are due")
    rotate_parser.add_argument("sets", nargs="*", metavar="SET", help="Secret sets (default: all)")

    disable_parser = subparsers.add_parser("disable", help="Disable superseded credentials")
    disable_parser.add_argument("sets", nargs="*", metavar="SET", help="Secret sets (default: all)")

    subparsers.add_parser("check", help="Validate the configuration file")
    subparsers.add_parser("plugins", help="List registered plugin packages")
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        from keyrotor import __version__

        print(f"keyrotor {__version__}")
        return 0

    if args.command is None:
        parser.print_help()
        return 0

    try:
        settings = get_settings()
    except ConfigError as e:
        print(f"Error: invalid environment settings: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=logging.DEBUG if args.verbose or settings.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    registry = default_registry()
    if args.command == "plugins":
        return _cmd_plugins(registry)

    config_file = args.config or settings.config_file
    try:
        config = prepare(
            load_config(
                config_file,
                rotate_after=_pick(args.rotate_after, settings.rotate_after),
                disable_after=_pick(args.disable_after, settings.disable_after),
            )
        )
    except (ConfigError, AggregateError) as e:
        logger.error("Invalid configuration in %s: %s", config_file, e)
        print(f"Error: invalid configuration in {config_file}: {e}", file=sys.stderr)
        return 2

    if args.command == "check":
        return _cmd_check(config)

    dry_run = args.dry_run or settings.dry_run
    if args.command == "rotate":
        return _cmd_rotate(args, config, registry, dry_run)
    elif args.command == "disable":
        return _cmd_disable(args, config, registry, dry_run)
    else:
        parser.print_help()
        return 0


# ─── Commands ────────────────────────────────────────────────────────


def _cmd_plugins(registry: Registry) -> int:
    for package in registry.packages():
        print(package)
    return 0


def _cmd_check(config: RotorConfig) -> int:
    print("Plugins:")
    for name, pc in sorted(config.plugins.items()):
        print(f"  {name:<16} {pc.package}")

    print("Secret sets:")
    for ss in config.secret_sets:
        disable = ss.disable_client or "-"
        print(
            f"  {ss.name}: rotation={ss.rotation_client} disable={disable} "
            f"rotate_after={ss.rotate_after} disable_after={ss.disable_after}"
        )
        for secret in ss.secrets:
            stores = ", ".join(f"{sm.storage_client}:{sm.name}" for sm in secret.storages)
            print(f"    {secret.name} -> {stores or '(no stores)'}")

    print("Configuration OK")
    return 0


def _select_sets(config: RotorConfig, names: list[str]) -> list[SecretSet] | None:
    if not names:
        return list(config.secret_sets)

    selected = []
    for name in names:
        ss = config.find_secret_set(name)
        if ss is None:
            logger.error("Unknown secret set %r", name)
            print(f"Error: no secret set named {name!r}", file=sys.stderr)
            return None
        selected.append(ss)
    return selected


def _cmd_rotate(
    args: argparse.Namespace, config: RotorConfig, registry: Registry, dry_run: bool
) -> int:
    sets = _select_sets(config, args.sets)
    if sets is None:
        return 2

    plugins = PluginManager(config.plugins, registry)
    failed = False
    try:
        with _cancel_on_signal() as cancel:
            for ss in sets:
                try:
                    client = plugins.capability(ss.rotation_client, RotationClient)
                except PluginError as e:
                    logger.error("Unable to load rotation client for secret set %s: %s", ss.name, e)
                    failed = True
                    continue

                logger.info("Rotating secret set %s with %s", ss.name, client.name())
                mgr = RotationManager(client, ss.rotate_after, dry_run, plugins, ss.secrets)
                batch = mgr.rotate_all(cancel)
                failed |= not _report(ss, batch)
                if batch.cancelled:
                    break
    finally:
        plugins.close()

    return 1 if failed else 0


def _cmd_disable(
    args: argparse.Namespace, config: RotorConfig, registry: Registry, dry_run: bool
) -> int:
    sets = _select_sets(config, args.sets)
    if sets is None:
        return 2

    plugins = PluginManager(config.plugins, registry)
    failed = False
    try:
        with _cancel_on_signal() as cancel:
            for ss in sets:
                if not ss.disable_client:
                    logger.info("Secret set %s has no disable client; skipping", ss.name)
                    continue

                try:
                    client = plugins.capability(ss.disable_client, DisableClient)
                except PluginError as e:
                    logger.error("Unable to load disable client for secret set %s: %s", ss.name, e)
                    failed = True
                    continue

                logger.info("Disabling old secrets in set %s with %s", ss.name, client.name())
                mgr = DisableManager(client, ss.disable_after, dry_run, ss.secrets)
                batch = mgr.disable_all(cancel)
                failed |= not _report(ss, batch)
                if batch.cancelled:
                    break
    finally:
        plugins.close()

    return 1 if failed else 0


def _report(ss: SecretSet, batch: BatchResult) -> bool:
    """Print one line per secret. Returns False if anything failed or was cancelled."""
    for r in batch.results:
        print(f"  {ss.name}/{r.secret}: {r.outcome}")
        for err in r.errors:
            print(f"    error: {err}")
    if batch.cancelled:
        print(f"  {ss.name}: cancelled")
    return batch.ok and not batch.cancelled


@contextlib.contextmanager
def _cancel_on_signal() -> Iterator[threading.Event]:
    """Set the yielded event on SIGINT or SIGTERM; restore the old handlers on exit."""
    cancel = threading.Event()

    def _handle(signum, frame):
        logger.warning("Received signal %d; finishing current secret and stopping", signum)
        cancel.set()

    previous = {}
    if threading.current_thread() is threading.main_thread():
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, _handle)
    try:
        yield cancel
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


if __name__ == "__main__":
    sys.exit(main())
