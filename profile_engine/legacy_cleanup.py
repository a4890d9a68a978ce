"""
Discovery, migration and removal of legacy profile backup files.

Older releases kept one copy of a tool's native file per profile next to the
real file, for example ~/.claude/settings.work.json. This module finds those
copies, can import them as profiles, and can delete them.

Safety posture
--------------
- Only regular, non-symlink files directly inside a tool's config directory
  whose name matches a fixed legacy convention are ever considered.
- Every record is re-validated immediately before deletion.
- A tool's live native files and the engine's own temp files never qualify.
- One failed record never aborts the rest of the batch.
"""

from __future__ import annotations

import logging
import re
import tarfile
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import zstandard as zstd

from profile_engine.atomic_io import is_temp_path
from profile_engine.data_models import CleanupOutcome, MigrationRecord, Tool, ToolId
from profile_engine.errors import NotFoundError, SafetyViolationError, TpmError
from profile_engine.native_config.adapters import adapter_for
from profile_engine.profile_store.api import ProfileStore
from profile_engine.tools import CLAUDE_CODE, CODEX, GEMINI_CLI, ToolRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LegacyRule:
    """
    Naming convention for one kind of legacy backup file.

    Attributes
    ----------
    tool_id:
        Tool the convention belongs to.
    label:
        Human-readable convention, e.g. 'settings.<profile>.json'.
    pattern:
        Regex with one group capturing the profile name.
    native_index:
        Index into Tool.native_files of the file this backup is a copy of.
    excluded:
        Captured names that belong to the tool itself and are never backups.
    """

    tool_id: ToolId
    label: str
    pattern: re.Pattern[str]
    native_index: int
    excluded: frozenset[str] = frozenset()


LEGACY_RULES: tuple[LegacyRule, ...] = (
    LegacyRule(
        CLAUDE_CODE,
        "settings.<profile>.json",
        re.compile(r"^settings\.(.+)\.json$"),
        0,
        excluded=frozenset({"local"}),
    ),
    LegacyRule(CODEX, "config.<profile>.toml", re.compile(r"^config\.(.+)\.toml$"), 0),
    LegacyRule(CODEX, "auth.<profile>.json", re.compile(r"^auth\.(.+)\.json$"), 1),
    LegacyRule(GEMINI_CLI, ".env.<profile>", re.compile(r"^\.env\.(.+)$"), 0),
)


@dataclass(frozen=True, slots=True)
class MigrationOutcome:
    """Result of importing one legacy profile."""

    tool_id: ToolId
    profile_name: str
    imported: bool
    reason: str | None = None


def _match_rule(tool: Tool, path: Path) -> tuple[LegacyRule, str] | None:
    if is_temp_path(path):
        return None
    for rule in LEGACY_RULES:
        if rule.tool_id != tool.tool_id:
            continue
        match = rule.pattern.match(path.name)
        if match is not None and match.group(1).strip() and match.group(1) not in rule.excluded:
            return rule, match.group(1)
    return None


def _validate_candidate(tool: Tool, path: Path) -> tuple[LegacyRule, str]:
    """
    Confirm `path` is a legacy backup of `tool`.

    Raises
    ------
    SafetyViolationError
        If the path fails any check.
    """
    if path.parent.resolve() != tool.config_dir.resolve():
        raise SafetyViolationError(f"{path} is not directly inside {tool.config_dir}")
    if tool.owns_path(path):
        raise SafetyViolationError(f"{path} is a live native config file")
    if path.is_symlink() or not path.is_file():
        raise SafetyViolationError(f"{path} is not a regular file")
    matched = _match_rule(tool, path)
    if matched is None:
        raise SafetyViolationError(f"{path.name} does not follow a legacy backup convention")
    return matched


def scan(tools: Iterable[Tool]) -> list[MigrationRecord]:
    """
    Find legacy backup files for the given tools.

    Returns
    -------
    list[MigrationRecord]
        Records ordered by tool then file name.
    """
    records: list[MigrationRecord] = []
    for tool in tools:
        if not tool.config_dir.is_dir():
            continue
        try:
            entries = sorted(tool.config_dir.iterdir(), key=lambda p: p.name)
        except OSError as exc:
            logger.warning("Cannot list %s: %s", tool.config_dir, exc)
            continue
        for entry in entries:
            try:
                rule, profile_name = _validate_candidate(tool, entry)
                stat = entry.stat()
            except SafetyViolationError:
                continue
            except OSError as exc:
                logger.warning("Skipping unreadable legacy candidate %s: %s", entry, exc)
                continue
            records.append(
                MigrationRecord(
                    tool_id=tool.tool_id,
                    path=entry,
                    profile_name=profile_name,
                    size_bytes=stat.st_size,
                    modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    rule=rule.label,
                )
            )
    return records


def write_archive(records: Sequence[MigrationRecord], archive_path: Path) -> Path:
    """
    Write a .tar.zst archive holding the record files.

    Entries are stored as '<tool_id>/<file name>'.

    Raises
    ------
    TpmError
        If the archive already exists or cannot be written.
    """
    archive_path = archive_path.expanduser().resolve()
    if archive_path.exists():
        raise TpmError(f"Refusing to overwrite existing archive: {archive_path}")
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with archive_path.open("wb") as raw:
            cctx = zstd.ZstdCompressor()
            with cctx.stream_writer(raw) as zst_stream:
                with tarfile.open(fileobj=zst_stream, mode="w|") as tf:
                    for record in records:
                        tf.add(record.path, arcname=f"{record.tool_id}/{record.path.name}", recursive=False)
    except OSError as exc:
        archive_path.unlink(missing_ok=True)
        raise TpmError(f"Cannot write legacy archive {archive_path}: {exc}") from exc
    return archive_path


def clean(
    records: Sequence[MigrationRecord],
    registry: ToolRegistry,
    *,
    archive_path: Path | None = None,
) -> list[CleanupOutcome]:
    """
    Delete legacy backup files.

    Parameters
    ----------
    records:
        Records from `scan`.
    registry:
        Tool registry used to re-validate each record.
    archive_path:
        Optional .tar.zst path. When given, every record that passes
        validation is archived before anything is deleted.

    Returns
    -------
    list[CleanupOutcome]
        One outcome per record, in input order.

    Raises
    ------
    TpmError
        If archiving was requested and failed. Nothing is deleted then.
    """
    checked: list[tuple[MigrationRecord, str | None]] = []
    for record in records:
        try:
            _validate_candidate(registry.get(record.tool_id), record.path)
        except (SafetyViolationError, NotFoundError) as exc:
            checked.append((record, str(exc)))
        else:
            checked.append((record, None))

    if archive_path is not None:
        valid = [record for record, error in checked if error is None]
        if valid:
            write_archive(valid, archive_path)
            logger.info("Archived %d legacy file(s) to %s", len(valid), archive_path)

    outcomes: list[CleanupOutcome] = []
    for record, error in checked:
        if error is not None:
            outcomes.append(CleanupOutcome(record=record, removed=False, error=error))
            continue
        try:
            record.path.unlink()
        except OSError as exc:
            logger.warning("Failed to remove legacy file %s: %s", record.path, exc)
            outcomes.append(CleanupOutcome(record=record, removed=False, error=str(exc)))
            continue
        logger.info("Removed legacy file %s", record.path)
        outcomes.append(CleanupOutcome(record=record, removed=True))
    return outcomes


def migrate(
    records: Sequence[MigrationRecord],
    registry: ToolRegistry,
    store: ProfileStore,
) -> list[MigrationOutcome]:
    """
    Import legacy backups as profiles.

    Records are grouped per (tool, profile name) so that Codex's two files form
    one profile. Existing profiles are never overwritten.

    Returns
    -------
    list[MigrationOutcome]
        One outcome per (tool, profile name) group.
    """
    groups: dict[tuple[ToolId, str], list[MigrationRecord]] = {}
    for record in records:
        groups.setdefault((record.tool_id, record.profile_name), []).append(record)

    outcomes: list[MigrationOutcome] = []
    for (tool_id, profile_name), group in groups.items():
        try:
            tool = registry.get(tool_id)
            snapshot: dict[Path, bytes | None] = {path: None for path in tool.native_files}
            for record in group:
                rule, _ = _validate_candidate(tool, record.path)
                snapshot[tool.native_files[rule.native_index]] = record.path.read_bytes()
            credentials = adapter_for(tool).parse(tool, snapshot)
            store.create(tool_id, profile_name, credentials)
        except (TpmError, OSError) as exc:
            outcomes.append(MigrationOutcome(tool_id, profile_name, imported=False, reason=str(exc)))
            continue
        logger.info("Imported legacy profile %s for %s", profile_name, tool_id)
        outcomes.append(MigrationOutcome(tool_id, profile_name, imported=True))
    return outcomes
