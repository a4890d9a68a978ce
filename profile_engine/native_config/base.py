"""
Native config adapter base class.

An adapter translates between a tool's on-disk config files and the engine's
normalized Credentials record.

Write protocol
--------------
1. Snapshot the current bytes of every native file.
2. Serialize the new content for every file in memory.
3. Stage each file as a sibling temp file.
4. Move the staged files into place with os.replace, in the tool's file order.

If step 3 fails nothing visible has changed. If step 4 fails part way through a
multi-file tool, files already replaced are restored from the snapshot, so the
tool never sees a mix of old and new files after a failed write.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping

from profile_engine.atomic_io import discard_temp, stage_bytes, write_bytes_atomic
from profile_engine.data_models import (
    AdapterKind,
    Credentials,
    Tool,
    WriteResult,
    credentials_fingerprint,
    fingerprint_bytes,
)
from profile_engine.errors import NativeConfigIOError, NativeConfigParseError

logger = logging.getLogger(__name__)

NativeSnapshot = Mapping[Path, bytes | None]


def decode_text(path: Path, data: bytes | None) -> str:
    """Decode native file bytes as UTF-8, treating a missing file as empty."""
    if data is None:
        return ""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise NativeConfigParseError(f"{path} is not UTF-8 text: {exc}") from exc


class NativeConfigAdapter(ABC):
    """Reads and writes one native config format."""

    kind: AdapterKind

    def snapshot(self, tool: Tool) -> dict[Path, bytes | None]:
        """
        Read the raw bytes of every native file.

        Returns
        -------
        dict[Path, bytes | None]
            Bytes per native path; None for files that do not exist.

        Raises
        ------
        NativeConfigIOError
            If an existing file cannot be read.
        """
        contents: dict[Path, bytes | None] = {}
        for path in tool.native_files:
            try:
                contents[path] = path.read_bytes()
            except FileNotFoundError:
                contents[path] = None
            except OSError as exc:
                raise NativeConfigIOError(f"Cannot read {path}: {exc}") from exc
        return contents

    @abstractmethod
    def parse(self, tool: Tool, contents: NativeSnapshot) -> Credentials:
        """
        Extract credentials from native file contents.

        Raises
        ------
        NativeConfigParseError
            If a file is not in the expected format.
        """

    @abstractmethod
    def serialize(
        self,
        tool: Tool,
        credentials: Credentials,
        contents: NativeSnapshot,
        *,
        label: str | None = None,
    ) -> dict[Path, bytes]:
        """
        Render new native file contents.

        Parameters
        ----------
        tool:
            Tool whose files are rendered.
        credentials:
            Normalized credentials to apply.
        contents:
            Current file contents. Unrelated settings in them are preserved.
        label:
            Optional profile name for formats that record one.

        Returns
        -------
        dict[Path, bytes]
            New bytes for every native path.
        """

    def normalize(self, credentials: Credentials) -> Credentials:
        """Return the credentials exactly as a write followed by a read would yield them."""
        return Credentials(
            api_key=credentials.api_key.strip(),
            base_url=credentials.base_url.strip(),
            provider=(credentials.provider or "").strip() or None,
        )

    def credentials_fingerprint(self, credentials: Credentials) -> str:
        return credentials_fingerprint(self.normalize(credentials))

    def read(self, tool: Tool) -> Credentials:
        """
        Read the tool's current credentials.

        Raises
        ------
        NativeConfigIOError
            If a file exists but cannot be read.
        NativeConfigParseError
            If a file is not in the expected format.
        """
        return self.parse(tool, self.snapshot(tool))

    def write(self, tool: Tool, credentials: Credentials, *, label: str | None = None) -> WriteResult:
        """
        Apply credentials to the tool's native files atomically.

        Returns
        -------
        WriteResult
            Fingerprint of every written file.

        Raises
        ------
        NativeConfigIOError
            If any file cannot be written. Files are left as they were.
        """
        current = self.snapshot(tool)
        rendered = self.serialize(tool, self.normalize(credentials), current, label=label)

        staged: list[tuple[Path, Path]] = []
        try:
            for path in tool.native_files:
                staged.append((path, stage_bytes(path, rendered[path])))
        except OSError as exc:
            for _, temp_path in staged:
                discard_temp(temp_path)
            raise NativeConfigIOError(f"Cannot write {tool.display_name} config: {exc}") from exc

        replaced: list[Path] = []
        try:
            for path, temp_path in staged:
                os.replace(temp_path, path)
                replaced.append(path)
        except OSError as exc:
            for path, temp_path in staged:
                if path not in replaced:
                    discard_temp(temp_path)
            self._restore(replaced, current)
            raise NativeConfigIOError(f"Cannot write {tool.display_name} config: {exc}") from exc

        logger.debug("Wrote %s native config: %s", tool.tool_id, ", ".join(map(str, replaced)))
        return WriteResult(
            tool_id=tool.tool_id,
            fingerprints={path: fingerprint_bytes(rendered[path]) for path in tool.native_files},
        )

    def _restore(self, replaced: list[Path], previous: NativeSnapshot) -> None:
        for path in replaced:
            prior = previous.get(path)
            try:
                if prior is None:
                    path.unlink(missing_ok=True)
                else:
                    write_bytes_atomic(path, prior)
            except OSError as exc:
                logger.error("Failed to restore %s after a failed write: %s", path, exc)
