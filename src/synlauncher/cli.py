# src/synlauncher/cli.py

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional, Sequence

from synlauncher import log_utils
from synlauncher.config import LauncherConfig, load_config
from synlauncher.download.catalog import fetch_catalog
from synlauncher.download.files import is_valid_client_dir
from synlauncher.download.interfaces import (
    OperationResult,
    ProgressEvent,
    SourceDescriptor,
)
from synlauncher.download.orchestrator import SyncOrchestrator
from synlauncher.exceptions import CatalogError, ConfigurationError, SynLauncherError

ADDON_COMMANDS_WITH_NAME = ("install", "update", "uninstall", "hash")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the synlauncher command line."""
    parser = argparse.ArgumentParser(
        prog="synlauncher",
        description="synlauncher - Synastria client, patch and addon manager",
    )
    parser.add_argument(
        "--log-level",
        metavar="LEVEL",
        help="Console and file log level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "--config-dir",
        metavar="DIR",
        help="Directory holding config.json and synlauncher.yaml",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print results as JSON envelopes",
    )
    subparsers = parser.add_subparsers(dest="command")

    # Addon management
    addons_parser = subparsers.add_parser("addons", help="Manage curated addons")
    addons_parser.add_argument(
        "--catalog-url", metavar="URL", help="Override the addon catalog URL"
    )
    addons_parser.add_argument(
        "--client-dir", metavar="DIR", help="Override the client directory"
    )
    addons_subparsers = addons_parser.add_subparsers(
        dest="addons_command", required=True
    )
    addons_subparsers.add_parser("list", help="List catalog addons and install state")
    for name, help_text in (
        ("install", "Install an addon"),
        ("update", "Update an installed addon"),
        ("uninstall", "Remove an installed addon"),
        ("hash", "Show the latest remote version of an addon"),
    ):
        command_parser = addons_subparsers.add_parser(name, help=help_text)
        command_parser.add_argument("name", help="Addon name as listed in the catalog")
    addons_subparsers.add_parser(
        "auto-update", help="Update every installed addon that has a newer version"
    )

    # Client patch
    patch_parser = subparsers.add_parser("patch", help="Download and apply a patch")
    patch_parser.add_argument(
        "--url", required=True, help="Direct download URL of the patch archive"
    )
    patch_parser.add_argument(
        "--client-dir", metavar="DIR", help="Override the client directory"
    )

    # Client installation
    client_parser = subparsers.add_parser("client", help="Manage the game client")
    client_subparsers = client_parser.add_subparsers(
        dest="client_command", required=True
    )
    client_download = client_subparsers.add_parser(
        "download", help="Download the full client from a magnet link"
    )
    client_download.add_argument("magnet", help="Magnet link of the client")
    client_download.add_argument(
        "--dest", required=True, metavar="DIR", help="Destination directory"
    )
    client_validate = client_subparsers.add_parser(
        "validate", help="Check that a directory holds the client"
    )
    client_validate.add_argument("directory")
    client_set_dir = client_subparsers.add_parser(
        "set-dir", help="Record the client directory"
    )
    client_set_dir.add_argument("directory")
    client_launch = client_subparsers.add_parser("launch", help="Start the client")
    client_launch.add_argument(
        "--client-dir", metavar="DIR", help="Override the client directory"
    )

    return parser


def _print_envelope(envelope: Dict[str, Any], as_json: bool) -> int:
    """
    Report an operation envelope and return the matching exit code.

    Parameters:
        envelope (Dict[str, Any]): `{success, ...}` mapping.
        as_json (bool): Print the envelope as JSON instead of logging it.

    Returns:
        int: 0 on success, 1 on failure.
    """
    success = bool(envelope.get("success"))
    if as_json:
        print(json.dumps(envelope, indent=2))
    elif success:
        details = {k: v for k, v in envelope.items() if k not in ("success", "message")}
        if envelope.get("message"):
            log_utils.logger.info(envelope["message"])
        for key, value in details.items():
            log_utils.logger.info(f"{key}: {value}")
    else:
        log_utils.logger.error(envelope.get("message") or "Operation failed")
    return 0 if success else 1


def _find_addon(catalog: Sequence[SourceDescriptor], name: str) -> SourceDescriptor:
    for addon in catalog:
        if addon.name == name:
            return addon
    for addon in catalog:
        if addon.name.lower() == name.lower():
            return addon
    raise CatalogError(f"Addon '{name}' is not in the catalog")


async def _load_catalog(
    orchestrator: SyncOrchestrator, config: LauncherConfig
) -> List[SourceDescriptor]:
    if not config.catalog_url:
        raise ConfigurationError(
            "No addon catalog URL configured",
            details="use --catalog-url, SYNLAUNCHER_CATALOG_URL or catalog_url in synlauncher.yaml",
        )
    return await fetch_catalog(orchestrator.client, config.catalog_url)


def _print_addon_list(addons: List[Dict[str, Any]]) -> None:
    for entry in addons:
        marker = "*" if entry.get("installed") else " "
        version = (entry.get("hash") or "")[:7]
        suffix = " (pending)" if entry.get("pending") else ""
        updated = entry.get("lastUpdated") or ""
        print(f"{marker} {entry['name']:<40} {version:<8} {updated}{suffix}")


def _log_progress(event: ProgressEvent) -> None:
    log_utils.logger.info(
        f"[{event.current}/{event.total}] {event.action.capitalize()} {event.name}"
    )


async def _run_addons(args: argparse.Namespace, config: LauncherConfig) -> int:
    async with SyncOrchestrator(config) as orchestrator:
        try:
            catalog = await _load_catalog(orchestrator, config)
            addon = (
                _find_addon(catalog, args.name)
                if args.addons_command in ADDON_COMMANDS_WITH_NAME
                else None
            )
        except SynLauncherError as e:
            return _print_envelope(OperationResult.fail(str(e)).to_dict(), args.json)

        if args.addons_command == "list":
            result = orchestrator.get_addons_list(catalog)
            if result.success and not args.json:
                _print_addon_list(result.payload["addons"])
                return 0
            return _print_envelope(result.to_dict(), args.json)

        if args.addons_command == "auto-update":
            try:
                report = await orchestrator.auto_update_addons(
                    catalog, args.client_dir, on_progress=_log_progress
                )
            except SynLauncherError as e:
                return _print_envelope(
                    OperationResult.fail(str(e)).to_dict(), args.json
                )
            envelope = {"success": report.success, **report.to_dict()}
            if not report.success:
                envelope["message"] = f"{len(report.failed)} addon(s) failed to update"
            return _print_envelope(envelope, args.json)

        assert addon is not None
        if args.addons_command == "install":
            result = await orchestrator.install_addon(addon, args.client_dir)
        elif args.addons_command == "update":
            result = await orchestrator.update_addon(addon, args.client_dir)
        elif args.addons_command == "uninstall":
            result = await orchestrator.uninstall_addon(addon, args.client_dir)
        else:
            result = await orchestrator.get_addon_version(addon)
        return _print_envelope(result.to_dict(), args.json)


async def _run_patch(args: argparse.Namespace, config: LauncherConfig) -> int:
    async with SyncOrchestrator(config) as orchestrator:
        result = await orchestrator.install_patch(lambda: args.url, args.client_dir)
    return _print_envelope(result.to_dict(), args.json)


async def _run_client_download(
    args: argparse.Namespace, config: LauncherConfig
) -> int:
    def _on_progress(percent: int) -> None:
        log_utils.logger.info(f"Client download: {percent}%")

    async with SyncOrchestrator(config) as orchestrator:
        transfer = orchestrator.download_client(
            args.magnet, args.dest, on_progress=_on_progress
        )
        try:
            completed = await transfer.wait()
        except asyncio.CancelledError:
            transfer.cancel()
            raise
    if completed:
        result = OperationResult.ok("Client download complete", clientDir=args.dest)
        return _print_envelope(result.to_dict(), args.json)
    return _print_envelope(
        OperationResult.fail("Client download cancelled").to_dict(), args.json
    )


def _run_client(args: argparse.Namespace, config: LauncherConfig) -> int:
    if args.client_command == "download":
        return asyncio.run(_run_client_download(args, config))
    if args.client_command == "validate":
        valid = is_valid_client_dir(args.directory)
        result = (
            OperationResult.ok(clientDir=args.directory)
            if valid
            else OperationResult.fail(
                f"{args.directory} does not contain wow.exe or wowext.exe"
            )
        )
        return _print_envelope(result.to_dict(), args.json)
    orchestrator = SyncOrchestrator(config)
    if args.client_command == "launch":
        result = orchestrator.launch_client(args.client_dir)
        return _print_envelope(result.to_dict(), args.json)
    return _print_envelope(
        orchestrator.set_client_directory(args.directory).to_dict(), args.json
    )


def _prepare_config(args: argparse.Namespace) -> Optional[LauncherConfig]:
    """
    Load configuration and set up console and file logging.

    Returns:
        Optional[LauncherConfig]: The configuration, or None when it could not be loaded.
    """
    try:
        config = load_config(
            config_dir=args.config_dir,
            catalog_url=getattr(args, "catalog_url", None),
        )
        config.ensure_config_dir()
    except SynLauncherError as error:
        log_utils.logger.error(f"Failed to load configuration: {error}")
        return None

    level = args.log_level or config.log_level
    log_utils.set_log_level(level)
    try:
        log_utils.add_file_logging(config.log_dir, level)
    except OSError as error:
        log_utils.logger.warning(f"File logging disabled: {error}")
    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    # Logging is automatically initialized by importing log_utils

    """
    Entry point for the synlauncher command-line interface.

    Parses command-line arguments and dispatches the addons, patch and client
    subcommands.

    Returns:
        int: Process exit code, 0 on success and 1 on failure.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    config = _prepare_config(args)
    if config is None:
        return 1

    try:
        if args.command == "addons":
            return asyncio.run(_run_addons(args, config))
        if args.command == "patch":
            return asyncio.run(_run_patch(args, config))
        if args.command == "client":
            return _run_client(args, config)
    except KeyboardInterrupt:
        log_utils.logger.info("Interrupted")
        return 1
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
