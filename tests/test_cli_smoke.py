"""
CLI smoke tests: argument parsing and help output only, no engine calls.
"""

from __future__ import annotations

import pytest

from tpm.cli import main


def _run_help(argv: list[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    assert excinfo.value.code == 0


def test_cli_root_help(capsys: pytest.CaptureFixture[str]) -> None:
    _run_help(["--help"])
    captured = capsys.readouterr()
    assert "usage:" in captured.out.lower()
    assert "tpm" in captured.out.lower()


@pytest.mark.parametrize(
    "subcommand",
    ["list", "active", "save", "switch", "delete", "pending", "ack", "import", "watch", "legacy", "proxy"],
)
def test_cli_subcommand_help(subcommand: str, capsys: pytest.CaptureFixture[str]) -> None:
    _run_help([subcommand, "--help"])
    captured = capsys.readouterr()
    out = captured.out.lower()
    assert "usage:" in out
    assert subcommand in out


def test_cli_rejects_unknown_tool(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["list", "--tool", "vim"])
    assert excinfo.value.code == 2
    assert "invalid choice" in capsys.readouterr().err
