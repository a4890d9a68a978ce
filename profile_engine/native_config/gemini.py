"""
Gemini CLI .env adapter.

The file is parsed with python-dotenv and edited with dotenv.set_key, which
rewrites only the lines of the managed variables and leaves every other line
(comments, unrelated variables) as it was.
"""

from __future__ import annotations

import io
import logging
import tempfile
from pathlib import Path

from dotenv import dotenv_values, set_key

from profile_engine.data_models import AdapterKind, Credentials, Tool
from profile_engine.errors import NativeConfigParseError

from .base import NativeConfigAdapter, NativeSnapshot, decode_text

logger = logging.getLogger(__name__)

API_KEY_VAR = "GEMINI_API_KEY"
BASE_URL_VAR = "GOOGLE_GEMINI_BASE_URL"
MODEL_VAR = "GEMINI_MODEL"
DEFAULT_MODEL = "gemini-2.0-flash-exp"


class GeminiEnvAdapter(NativeConfigAdapter):
    """Reads and writes ~/.gemini/.env."""

    kind = AdapterKind.GEMINI_DOTENV

    def parse(self, tool: Tool, contents: NativeSnapshot) -> Credentials:
        path = tool.native_files[0]
        text = decode_text(path, contents.get(path))
        values = dotenv_values(stream=io.StringIO(text), interpolate=False)
        return Credentials(
            api_key=values.get(API_KEY_VAR) or "",
            base_url=values.get(BASE_URL_VAR) or "",
            provider=values.get(MODEL_VAR) or None,
        )

    def normalize(self, credentials: Credentials) -> Credentials:
        return Credentials(
            api_key=credentials.api_key.strip(),
            base_url=credentials.base_url.strip(),
            provider=(credentials.provider or "").strip() or DEFAULT_MODEL,
        )

    def serialize(
        self,
        tool: Tool,
        credentials: Credentials,
        contents: NativeSnapshot,
        *,
        label: str | None = None,
    ) -> dict[Path, bytes]:
        path = tool.native_files[0]
        # set_key edits a file in place, so the edit runs on a scratch copy and
        # the result is handed back to the atomic writer.
        with tempfile.TemporaryDirectory(prefix="tpm-env-") as scratch_dir:
            scratch = Path(scratch_dir) / ".env"
            try:
                existing = decode_text(path, contents.get(path))
            except NativeConfigParseError as exc:
                logger.warning("Replacing unparseable %s: %s", path, exc)
                existing = ""
            scratch.write_bytes(existing.encode("utf-8"))
            set_key(scratch, API_KEY_VAR, credentials.api_key)
            set_key(scratch, BASE_URL_VAR, credentials.base_url)
            set_key(scratch, MODEL_VAR, credentials.provider or DEFAULT_MODEL)
            rendered = scratch.read_bytes()
        return {path: rendered}
