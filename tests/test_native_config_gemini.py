from __future__ import annotations

from dotenv import dotenv_values

from profile_engine.data_models import Credentials
from profile_engine.native_config.gemini import DEFAULT_MODEL, GeminiEnvAdapter
from profile_engine.tools import GEMINI_CLI, ToolRegistry


def test_write_creates_env_with_default_model(registry: ToolRegistry) -> None:
    tool = registry.get(GEMINI_CLI)

    GeminiEnvAdapter().write(tool, Credentials("g-key", "https://gemini.example"))

    values = dotenv_values(tool.native_files[0])
    assert values == {
        "GEMINI_API_KEY": "g-key",
        "GOOGLE_GEMINI_BASE_URL": "https://gemini.example",
        "GEMINI_MODEL": DEFAULT_MODEL,
    }


def test_write_keeps_comments_and_unrelated_variables(registry: ToolRegistry) -> None:
    tool = registry.get(GEMINI_CLI)
    path = tool.native_files[0]
    path.write_text(
        "# personal settings\nHTTP_PROXY=http://127.0.0.1:3128\nGEMINI_API_KEY=old\n",
        encoding="utf-8",
    )

    GeminiEnvAdapter().write(tool, Credentials("new", "https://g", "gemini-2.5-pro"))

    text = path.read_text(encoding="utf-8")
    assert "# personal settings" in text
    values = dotenv_values(path)
    assert values["HTTP_PROXY"] == "http://127.0.0.1:3128"
    assert values["GEMINI_API_KEY"] == "new"
    assert values["GEMINI_MODEL"] == "gemini-2.5-pro"


def test_read_applies_default_model_on_normalize(registry: ToolRegistry) -> None:
    adapter = GeminiEnvAdapter()
    tool = registry.get(GEMINI_CLI)
    tool.native_files[0].write_text("GEMINI_API_KEY=k\nGOOGLE_GEMINI_BASE_URL=https://g\n", encoding="utf-8")

    raw = adapter.read(tool)

    assert raw == Credentials("k", "https://g", None)
    assert adapter.normalize(raw).provider == DEFAULT_MODEL


def test_write_of_read_reproduces_fingerprint(registry: ToolRegistry) -> None:
    adapter = GeminiEnvAdapter()
    tool = registry.get(GEMINI_CLI)
    first = adapter.write(tool, Credentials("k", "https://g"))

    second = adapter.write(tool, adapter.read(tool))

    assert second.fingerprints == first.fingerprints


def test_values_are_not_interpolated(registry: ToolRegistry) -> None:
    tool = registry.get(GEMINI_CLI)
    tool.native_files[0].write_text("GEMINI_API_KEY=${HOME}-key\n", encoding="utf-8")

    assert GeminiEnvAdapter().read(tool).api_key == "${HOME}-key"


def test_non_utf8_file_is_replaced_on_write(registry: ToolRegistry) -> None:
    tool = registry.get(GEMINI_CLI)
    tool.native_files[0].write_bytes(b"\xff\xfe\x00broken")

    GeminiEnvAdapter().write(tool, Credentials("k", "https://g"))

    assert GeminiEnvAdapter().read(tool).api_key == "k"
