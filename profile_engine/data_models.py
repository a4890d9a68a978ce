"""Data models for the profile engine.

Profiles are the durable source of truth for saved credentials. Everything else
in this module is either a description of a supported tool, a derived view
(ActiveConfig, ProfileDescriptor) or a transient record (ExternalConfigChange,
MigrationRecord).

The models are intentionally standard-library-only (dataclasses) to keep the
engine lightweight and deterministic.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Mapping

ToolId = str

RESERVED_PROFILE_PREFIX = "dc_proxy_"


class AdapterKind(str, Enum):
    """Native config formats understood by the engine."""

    CLAUDE_SETTINGS_JSON = "claude_settings_json"
    CODEX_TOML_AUTH = "codex_toml_auth"
    GEMINI_DOTENV = "gemini_dotenv"


class ProxySyncOutcome(str, Enum):
    """What happened to the proxy during a profile switch."""

    NOT_APPLICABLE = "not_applicable"
    SYNCED = "synced"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Tool:
    """
    A supported CLI tool and the native files it reads.

    Attributes
    ----------
    tool_id:
        Stable identifier, e.g. 'codex'.
    display_name:
        Human-friendly name.
    config_dir:
        Directory holding the tool's native config files.
    native_files:
        Native config files, in write order.
    adapter_kind:
        Format of the native files.
    """

    tool_id: ToolId
    display_name: str
    config_dir: Path
    native_files: tuple[Path, ...]
    adapter_kind: AdapterKind

    def owns_path(self, path: Path) -> bool:
        target = path.expanduser().resolve()
        return any(target == p.resolve() for p in self.native_files)


@dataclass(frozen=True, slots=True)
class Credentials:
    """
    Normalized credential record translated to and from native files.

    Attributes
    ----------
    api_key:
        Secret key sent upstream.
    base_url:
        Upstream API base URL.
    provider:
        Tool-specific selector: Codex wire API or Gemini model. Unused by Claude.
    """

    api_key: str
    base_url: str
    provider: str | None = None

    def is_empty(self) -> bool:
        return not self.api_key and not self.base_url and not self.provider


MISSING_FINGERPRINT = "missing"


def fingerprint_bytes(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw file content."""
    return hashlib.sha256(data).hexdigest()


def fingerprint_or_missing(data: bytes | None) -> str:
    """Fingerprint file content, or MISSING_FINGERPRINT for an absent file."""
    return MISSING_FINGERPRINT if data is None else fingerprint_bytes(data)


def credentials_fingerprint(credentials: Credentials) -> str:
    """
    Return a stable digest of the credential fields.

    Parameters
    ----------
    credentials:
        Credentials that have already been normalized by the tool's adapter.

    Returns
    -------
    str
        SHA-256 hex digest over a canonical JSON rendering.
    """
    payload = {
        "api_key": credentials.api_key,
        "base_url": credentials.base_url,
        "provider": credentials.provider,
    }
    return fingerprint_bytes(json.dumps(payload, sort_keys=True).encode("utf-8"))


@dataclass(frozen=True, slots=True)
class Profile:
    """A named, stored set of credentials for one tool."""

    tool_id: ToolId
    name: str
    api_key: str
    base_url: str
    provider: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def credentials(self) -> Credentials:
        return Credentials(api_key=self.api_key, base_url=self.base_url, provider=self.provider)


@dataclass(frozen=True, slots=True)
class ActiveConfig:
    """
    Credentials currently in effect for a tool, derived from its native files.

    Attributes
    ----------
    profile_name:
        Matching stored profile, or None when the native content is custom.
    parse_error:
        Set when the native files could not be parsed. The config is then custom.
    """

    tool_id: ToolId
    api_key: str
    base_url: str
    provider: str | None
    profile_name: str | None
    parse_error: str | None = None

    @property
    def is_custom(self) -> bool:
        return self.profile_name is None


@dataclass(frozen=True, slots=True)
class ExternalConfigChange:
    """A native file mutation that the engine did not write."""

    tool_id: ToolId
    path: Path
    detected_at: datetime
    content_snapshot: bytes
    fingerprint: str

    def with_detected_at(self, detected_at: datetime) -> ExternalConfigChange:
        return replace(self, detected_at=detected_at)


@dataclass(frozen=True, slots=True)
class ProfileDescriptor:
    """Read-only projection of a Profile for display."""

    tool_id: ToolId
    name: str
    api_key_preview: str
    base_url: str
    provider: str | None
    created_at: datetime
    updated_at: datetime
    is_active: bool
    has_drift: bool
    switched_at: datetime | None


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    """
    A legacy backup file discovered in a tool's config directory.

    Attributes
    ----------
    profile_name:
        Profile name encoded in the file name, e.g. 'work' for 'settings.work.json'.
    rule:
        Naming convention that matched, e.g. 'settings.<profile>.json'.
    """

    tool_id: ToolId
    path: Path
    profile_name: str
    size_bytes: int
    modified_at: datetime
    rule: str


@dataclass(frozen=True, slots=True)
class CleanupOutcome:
    """Per-record result of a legacy cleanup."""

    record: MigrationRecord
    removed: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ToolProxyConfig:
    """Per-tool transparent proxy configuration."""

    tool_id: ToolId
    enabled: bool
    port: int
    local_api_key: str | None = None
    real_api_key: str | None = None
    real_base_url: str | None = None
    real_profile_name: str | None = None
    allow_public: bool = False
    auto_start: bool = False

    def has_upstream(self) -> bool:
        return bool(self.real_api_key) and bool(self.real_base_url)


@dataclass(frozen=True, slots=True)
class ProxyStatus:
    """Runtime status reported by a proxy controller."""

    tool_id: ToolId
    running: bool
    port: int | None = None


@dataclass(frozen=True, slots=True)
class WriteResult:
    """Fingerprints of every native file written by an adapter."""

    tool_id: ToolId
    fingerprints: Mapping[Path, str]


@dataclass(frozen=True, slots=True)
class SwitchResult:
    """
    Outcome of a profile switch.

    Notes
    -----
    proxy_sync FAILED is a partial success: the native files were written and
    stay written; only the live proxy kept its previous upstream.
    """

    active_config: ActiveConfig
    proxy_sync: ProxySyncOutcome
    proxy_message: str | None = None


@dataclass(frozen=True, slots=True)
class ImportResult:
    """Outcome of importing an external change."""

    profile_name: str
    was_new: bool
    replaced: bool
    active_config: ActiveConfig


def mask_api_key(api_key: str) -> str:
    """
    Mask an API key for display.

    Parameters
    ----------
    api_key:
        Key to mask.

    Returns
    -------
    str
        '****' for keys of 8 characters or fewer, otherwise the first and last
        four characters around '...'.
    """
    if len(api_key) <= 8:
        return "****"
    return f"{api_key[:4]}...{api_key[-4:]}"
