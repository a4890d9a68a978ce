"""
Command-line interface for the tool profile manager.

Notes
-----
The CLI is intentionally thin. It parses arguments, opens the engine and
delegates to ReconciliationService.

A CLI process is short-lived, so pending external changes only exist for the
duration of one command: `pending` runs a detection and lists what it finds,
`watch` keeps the watcher running in the foreground. The same holds for
proxies: `proxy start` runs the proxy until interrupted and marks it disabled
again on exit.
"""

from __future__ import annotations

import argparse
import threading
from pathlib import Path

from profile_engine.clock import to_utc_text
from profile_engine.data_models import Credentials, ExternalConfigChange, mask_api_key
from profile_engine.errors import TpmError
from profile_engine.logging_config import configure_logging
from profile_engine.paths import engine_paths_as_text, resolve_engine_paths
from profile_engine.reconciliation.engine import open_engine
from profile_engine.reconciliation.service import ReconciliationService
from profile_engine.settings_store import load_engine_settings
from profile_engine.tools import TOOL_IDS


def build_parser() -> argparse.ArgumentParser:
    """
    Build and return the top-level argument parser.

    Returns
    -------
    argparse.ArgumentParser
        Configured parser.
    """
    parser = argparse.ArgumentParser(
        prog="tpm",
        description="Tool Profile Manager for Claude Code, Codex and Gemini CLI",
    )
    parser.add_argument(
        "--data-root",
        type=Path,
        default=None,
        help="Override the engine data root (primarily for testing).",
    )
    parser.add_argument(
        "--home",
        type=Path,
        default=None,
        help="Directory containing .claude, .codex and .gemini (default: user home).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: from settings).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def _tool_arg(p: argparse.ArgumentParser, required: bool = True) -> None:
        p.add_argument("--tool", required=required, choices=TOOL_IDS, help="Tool id")

    sub.add_parser("paths", help="Print resolved engine paths")

    list_p = sub.add_parser("list", help="List a tool's profiles")
    _tool_arg(list_p)

    active_p = sub.add_parser("active", help="Show a tool's active config")
    _tool_arg(active_p)
    active_p.add_argument("--show-key", action="store_true", help="Print the full API key")

    save_p = sub.add_parser("save", help="Create or update a profile")
    _tool_arg(save_p)
    save_p.add_argument("--name", required=True, help="Profile name")
    save_p.add_argument("--api-key", default="", help="API key (required for a new profile)")
    save_p.add_argument("--base-url", default="", help="Base URL (required for a new profile)")
    save_p.add_argument(
        "--provider",
        default=None,
        help="Codex wire API (responses|chat) or Gemini model name",
    )

    switch_p = sub.add_parser("switch", help="Activate a profile")
    _tool_arg(switch_p)
    switch_p.add_argument("--name", required=True, help="Profile name")

    delete_p = sub.add_parser("delete", help="Delete a profile (native files are not touched)")
    _tool_arg(delete_p)
    delete_p.add_argument("--name", required=True, help="Profile name")

    pending_p = sub.add_parser("pending", help="Detect and list external config changes")
    _tool_arg(pending_p, required=False)

    ack_p = sub.add_parser("ack", help="Accept a tool's current native config as-is")
    _tool_arg(ack_p)

    import_p = sub.add_parser("import", help="Import a tool's current native config into a profile")
    _tool_arg(import_p)
    import_p.add_argument("--path", type=Path, required=True, help="Native config file that changed")
    import_p.add_argument(
        "--as-new",
        default=None,
        help="Create a new profile with this name instead of overwriting the active one",
    )

    watch_p = sub.add_parser("watch", help="Watch for external changes in the foreground")
    watch_p.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: until interrupted)",
    )

    ws_p = sub.add_parser("watch-settings", help="Show or change watch settings")
    toggle = ws_p.add_mutually_exclusive_group()
    toggle.add_argument("--enable", action="store_true", help="Enable external change watching")
    toggle.add_argument("--disable", action="store_true", help="Disable external change watching")
    ws_p.add_argument("--interval-ms", type=int, default=None, help="Poll interval in milliseconds")

    legacy_p = sub.add_parser("legacy", help="Manage legacy profile backup files")
    legacy_sub = legacy_p.add_subparsers(dest="legacy_command", required=True)
    legacy_sub.add_parser("scan", help="List legacy backup files")
    legacy_sub.add_parser("migrate", help="Import legacy backups as profiles")
    clean_p = legacy_sub.add_parser("clean", help="Delete legacy backup files")
    clean_p.add_argument(
        "--archive",
        type=Path,
        default=None,
        help="Write a .tar.zst archive of the files before deleting them",
    )

    proxy_p = sub.add_parser("proxy", help="Manage a tool's transparent proxy")
    proxy_sub = proxy_p.add_subparsers(dest="proxy_command", required=True)
    _tool_arg(proxy_sub.add_parser("status", help="Show proxy status"))
    start_p = proxy_sub.add_parser("start", help="Run the proxy in the foreground")
    _tool_arg(start_p)
    start_p.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: until interrupted)",
    )
    _tool_arg(proxy_sub.add_parser("stop", help="Mark the proxy disabled"))
    config_p = proxy_sub.add_parser("config", help="Show or change proxy settings")
    _tool_arg(config_p)
    config_p.add_argument("--port", type=int, default=None, help="Listening port")
    config_p.add_argument("--local-api-key", default=None, help="Key clients use against the proxy")
    config_p.add_argument(
        "--allow-public",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Listen on all interfaces",
    )
    config_p.add_argument(
        "--auto-start",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Start the proxy when the engine starts",
    )
    config_p.add_argument("--from-profile", default=None, help="Use a profile as the upstream")

    return parser


def _print_change(change: ExternalConfigChange) -> None:
    print(f"{to_utc_text(change.detected_at)}  {change.tool_id}  {change.path}  {change.fingerprint[:12]}")


def _run_watch(service: ReconciliationService, duration: float | None) -> int:
    stop = threading.Event()
    unsubscribe = service.subscribe(_print_change)
    service.start()
    try:
        stop.wait(duration)
    except KeyboardInterrupt:
        pass
    finally:
        unsubscribe()
    return 0


def _run_proxy_foreground(service: ReconciliationService, tool_id: str, duration: float | None) -> int:
    status = service.start_proxy(tool_id)
    print(f"{tool_id}: running on port {status.port}")
    stop = threading.Event()
    try:
        stop.wait(duration)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop_proxy(tool_id)
    print(f"{tool_id}: stopped")
    return 0


def _run_legacy(service: ReconciliationService, args: argparse.Namespace) -> int:
    records = service.scan_legacy()
    if args.legacy_command == "scan":
        for record in records:
            print(f"{record.tool_id}  {record.profile_name}  {record.rule}  {record.path}")
        print(f"{len(records)} legacy file(s).")
        return 0

    if args.legacy_command == "migrate":
        failed = 0
        for outcome in service.migrate_legacy(records):
            if outcome.imported:
                print(f"imported  {outcome.tool_id}  {outcome.profile_name}")
            else:
                failed += 1
                print(f"skipped   {outcome.tool_id}  {outcome.profile_name}  ({outcome.reason})")
        return 0 if failed == 0 else 2

    outcomes = service.clean_legacy(records, archive_path=args.archive)
    failed = 0
    for cleanup in outcomes:
        if cleanup.removed:
            print(f"removed  {cleanup.record.path}")
        else:
            failed += 1
            print(f"failed   {cleanup.record.path}  ({cleanup.error})")
    return 0 if failed == 0 else 2


def _run_proxy(service: ReconciliationService, args: argparse.Namespace) -> int:
    tool_id = args.tool
    if args.proxy_command == "status":
        status = service.proxy_status(tool_id)
        state = f"running on port {status.port}" if status.running else "stopped"
        print(f"{tool_id}: {state}")
        return 0
    if args.proxy_command == "start":
        return _run_proxy_foreground(service, tool_id, args.duration)
    if args.proxy_command == "stop":
        stopped = service.stop_proxy(tool_id)
        print(f"{tool_id}: {'stopped' if stopped else 'disabled (was not running in this process)'}")
        return 0

    changes = {
        key: value
        for key, value in (
            ("port", args.port),
            ("local_api_key", args.local_api_key),
            ("allow_public", args.allow_public),
            ("auto_start", args.auto_start),
        )
        if value is not None
    }
    config = service.get_proxy_config(tool_id)
    if changes:
        config = service.update_proxy_config(tool_id, **changes)
    if args.from_profile:
        config = service.update_proxy_from_profile(tool_id, args.from_profile)
    print(f"enabled            : {config.enabled}")
    print(f"port               : {config.port}")
    print(f"allow_public       : {config.allow_public}")
    print(f"auto_start         : {config.auto_start}")
    print(f"upstream profile   : {config.real_profile_name or '-'}")
    print(f"upstream base url  : {config.real_base_url or '-'}")
    return 0


def _dispatch(service: ReconciliationService, args: argparse.Namespace) -> int:
    if args.command == "list":
        for d in service.list_profiles(args.tool):
            marker = "*" if d.is_active else ("!" if d.has_drift else " ")
            print(f"{marker} {d.name}  {d.api_key_preview}  {d.base_url}")
        return 0

    if args.command == "active":
        active = service.get_active_config(args.tool)
        print(f"profile  : {active.profile_name or '<custom>'}")
        print(f"api key  : {active.api_key if args.show_key else _mask(active.api_key)}")
        print(f"base url : {active.base_url}")
        if active.provider:
            print(f"provider : {active.provider}")
        if active.parse_error:
            print(f"warning  : {active.parse_error}")
        return 0

    if args.command == "save":
        profile = service.save_profile(
            args.tool,
            args.name,
            Credentials(api_key=args.api_key, base_url=args.base_url, provider=args.provider),
        )
        print(f"Saved profile {profile.name} for {profile.tool_id}.")
        return 0

    if args.command == "switch":
        result = service.switch_profile(args.tool, args.name)
        print(f"{args.tool} is now using {result.active_config.profile_name or '<custom>'}.")
        if result.proxy_message:
            print(f"WARNING: {result.proxy_message}")
        return 0

    if args.command == "delete":
        service.delete_profile(args.tool, args.name)
        print(f"Deleted profile {args.name} for {args.tool}.")
        return 0

    if args.command == "pending":
        service.check_for_changes(args.tool)
        changes = [c for c in service.get_pending_changes() if args.tool in (None, c.tool_id)]
        for change in changes:
            _print_change(change)
        print(f"{len(changes)} pending change(s).")
        return 0

    if args.command == "ack":
        cleared = service.acknowledge_change(args.tool)
        print(f"Acknowledged {args.tool} ({cleared} pending change(s) cleared).")
        return 0

    if args.command == "import":
        result = service.import_external_change(args.tool, args.path, args.as_new)
        verb = "Created" if result.was_new else "Updated"
        print(f"{verb} profile {result.profile_name} for {args.tool}.")
        return 0

    if args.command == "watch":
        return _run_watch(service, args.duration)

    if args.command == "watch-settings":
        if args.enable or args.disable or args.interval_ms is not None:
            settings = service.update_watch_settings(
                enabled=True if args.enable else (False if args.disable else None),
                poll_interval_ms=args.interval_ms,
            )
        else:
            settings = service.get_watch_settings()
        print(f"enabled     : {settings.external_watch_enabled}")
        print(f"interval_ms : {settings.external_poll_interval_ms}")
        return 0

    if args.command == "legacy":
        return _run_legacy(service, args)

    if args.command == "proxy":
        return _run_proxy(service, args)

    return 0


def _mask(api_key: str) -> str:
    return mask_api_key(api_key) if api_key else ""


def main(argv: list[str] | None = None) -> int:
    """
    CLI entry point.

    Parameters
    ----------
    argv:
        Optional argument vector. If None, argparse uses sys.argv.

    Returns
    -------
    int
        Process exit code: 0 on success, 2 on a domain error.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        paths = resolve_engine_paths(args.data_root)
        if args.command == "paths":
            print(engine_paths_as_text(paths))
            return 0

        level = args.log_level or load_engine_settings(paths.settings_path).log_level
        configure_logging(paths.logs_root, level)
        service = open_engine(data_root=args.data_root, home=args.home)
        try:
            return _dispatch(service, args)
        finally:
            service.shutdown()
    except TpmError as exc:
        print(f"ERROR: {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
