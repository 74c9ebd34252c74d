import sys

import pytest

from grub_early.core.errors import ExternalToolError, MissingInputError
from grub_early.core.external import run_tool, tool_lines
from grub_early.core.requirements import ModuleNameError, artifact_path, read_artifact, write_artifact


# -----------------------------
# requirements artifact
# -----------------------------

def test_artifact_paths(tmp_path):
    assert artifact_path(tmp_path) == tmp_path / "modules.lst"
    assert artifact_path(tmp_path, "box_1") == tmp_path / "box_1" / "modules.lst"


def test_artifact_sorted_unique_one_per_line(tmp_path):
    p = write_artifact(tmp_path / "a" / "modules.lst", ["tar", "memdisk", "tar"])
    assert p.read_text(encoding="utf-8") == "memdisk\ntar\n"


def test_artifact_rejects_malformed_names(tmp_path):
    with pytest.raises(ModuleNameError):
        write_artifact(tmp_path / "modules.lst", ["ok", ""])
    with pytest.raises(ModuleNameError):
        write_artifact(tmp_path / "modules.lst", ["two words"])


def test_read_artifact_skips_comments_and_blanks(tmp_path):
    p = tmp_path / "modules.lst"
    p.write_text("# peer build\n\nluks\n  tar  \nluks\n", encoding="utf-8")
    assert read_artifact(p) == ("luks", "tar")


def test_read_artifact_missing(tmp_path):
    with pytest.raises(MissingInputError):
        read_artifact(tmp_path / "none.lst")
    assert read_artifact(tmp_path / "none.lst", required=False) == ()


# -----------------------------
# external tools
# -----------------------------

def test_run_tool_returns_stripped_stdout():
    assert run_tool([sys.executable, "-c", "print('  a\\n  b  ')"]) == "a\n  b"
    assert tool_lines([sys.executable, "-c", "print('a\\n\\n b ')"]) == ["a", "b"]


def test_run_tool_missing_binary(tmp_path):
    with pytest.raises(ExternalToolError, match="not found"):
        run_tool([tmp_path / "grub-nothing"])


def test_run_tool_failure_carries_stderr():
    with pytest.raises(ExternalToolError, match="boom"):
        run_tool([sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"])
