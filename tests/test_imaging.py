import tarfile

import pytest

from grub_early.core.config import Paths, ThemeSettings
from grub_early.core.errors import ExternalToolError, MissingInputError
from grub_early.core.imaging import memdisk, mkimage
from grub_early.core.imaging.memdisk import (
    copy_font,
    copy_locale,
    create_memdisk_tarball,
    prepare_memdisk_dir,
    stage_terminal_bg_images,
    stage_themes,
)
from grub_early.core.imaging.mkimage import (
    UnknownModuleError,
    bios_setup_argv,
    build_core_image,
    mkimage_argv,
    verify_modules,
)
from grub_early.core.scripts.themes import ThemeVariant


@pytest.fixture()
def paths(tmp_path, moddir):
    return Paths(
        grub_prefix=tmp_path / "usr",
        moddir=moddir,
        early_dir=tmp_path / "boot" / "grub" / "early",
        fonts_dir=tmp_path / "fonts",
        locale_dir=tmp_path / "locale",
    )


# -----------------------------
# memdisk
# -----------------------------

def test_prepare_memdisk_dir_empties_previous_content(paths):
    d = prepare_memdisk_dir(paths)
    (d / "stale.cfg").write_text("x", encoding="utf-8")
    prepare_memdisk_dir(paths, empty=False)
    assert (d / "stale.cfg").exists()
    prepare_memdisk_dir(paths)
    assert not (d / "stale.cfg").exists()
    assert d == paths.memdisk_dir


def test_copy_font_and_locale(paths, tmp_path):
    dest = tmp_path / "dest"
    with pytest.raises(MissingInputError, match="Font file"):
        copy_font(paths, "ascii", dest)
    paths.fonts_dir.mkdir()
    (paths.fonts_dir / "ascii.pf2").write_bytes(b"PFF2")
    assert copy_font(paths, "ascii", dest) == "ascii.pf2"
    assert (dest / "ascii.pf2").read_bytes() == b"PFF2"

    mo = paths.grub_locale_dir / "fr" / "LC_MESSAGES" / "grub.mo"
    mo.parent.mkdir(parents=True)
    mo.write_bytes(b"mo")
    assert copy_locale(paths, "fr", dest) == "fr.mo"


def test_compile_keymap_runs_kbdcomp(paths, tmp_path, monkeypatch):
    seen = []
    monkeypatch.setattr(memdisk, "run_tool", lambda argv, **kw: seen.append([str(a) for a in argv]) or "")
    assert memdisk.compile_keymap(paths, "fr", tmp_path / "d") == "fr.gkb"
    assert seen == [[str(paths.grub_kbdcomp), "-o", str(tmp_path / "d" / "fr.gkb"), "fr"]]


def test_stage_themes_generates_color_derivatives(tmp_path):
    src = tmp_path / "themes"
    (src / "base").mkdir(parents=True)
    (src / "base" / "theme.txt").write_text('#desktop-color: "#000000"\n', encoding="utf-8")
    (src / "other").mkdir()
    v = ThemeVariant(variant="", settings=ThemeSettings(themes_dir=src), source_dir=src,
                     names=["base", "base_FF0000"], default="base", colors=["#FF0000"])
    dest = stage_themes([v], tmp_path / "memdisk" / "themes")
    assert sorted(p.name for p in dest.iterdir()) == ["base", "base_FF0000"]
    assert (dest / "base_FF0000" / "theme.txt").read_text(encoding="utf-8") == 'desktop-color: "#FF0000"\n'


def test_stage_themes_copies_all_without_colors(tmp_path):
    src = tmp_path / "themes"
    for n in ("a", "b"):
        (src / n).mkdir(parents=True)
        (src / n / "theme.txt").write_text("", encoding="utf-8")
    v = ThemeVariant(variant="", settings=ThemeSettings(themes_dir=src), source_dir=src, names=["a", "b"], default="a")
    dest = stage_themes([v], tmp_path / "out")
    assert sorted(p.name for p in dest.iterdir()) == ["a", "b"]


def test_stage_terminal_bg_images(tmp_path, caplog):
    img = tmp_path / "bg.png"
    img.write_bytes(b"png")
    variants = {
        "day": ThemeVariant(variant="day", settings=ThemeSettings(terminal_bg_image=img)),
        "night": ThemeVariant(variant="night", settings=ThemeSettings(terminal_bg_image=tmp_path / "none.png")),
    }
    out = stage_terminal_bg_images(variants, tmp_path / "m")
    assert out == {"day": "terminal_background_day.png"}
    assert "not found" in caplog.text


def test_memdisk_tarball(paths):
    d = prepare_memdisk_dir(paths)
    (d / "normal.cfg").write_text("echo hi\n", encoding="utf-8")
    tar_path = create_memdisk_tarball(d, paths.core_memdisk)
    with tarfile.open(tar_path) as tar:
        assert "./normal.cfg" in tar.getnames()


# -----------------------------
# mkimage
# -----------------------------

def test_verify_modules(moddir):
    verify_modules(moddir, ["linux", "normal"])
    with pytest.raises(UnknownModuleError) as ei:
        verify_modules(moddir, ["linux", "zz_missing", "aa_missing"])
    assert ei.value.modules == ["aa_missing", "zz_missing"]
    assert "zz_missing" in str(ei.value)


def test_mkimage_argv(paths):
    argv = mkimage_argv(paths, ["linux", "normal"])
    assert argv[0] == str(paths.grub_mkimage)
    assert argv[argv.index("--format") + 1] == "i386-pc"
    assert argv[argv.index("--memdisk") + 1] == str(paths.core_memdisk)
    assert argv[argv.index("--config") + 1] == str(paths.core_cfg)
    assert argv[-2:] == ["linux", "normal"]


def test_bios_setup_argv(paths):
    assert bios_setup_argv(paths, "/dev/sda", "--force --skip-fs-probe") == [
        str(paths.grub_bios_setup),
        f"--directory={paths.early_dir}",
        "/dev/sda",
        "--force",
        "--skip-fs-probe",
    ]


def test_build_core_image_verifies_first(paths, monkeypatch):
    calls = []
    monkeypatch.setattr(mkimage, "run_tool", lambda argv, **kw: calls.append(argv) or "")
    with pytest.raises(UnknownModuleError):
        build_core_image(paths, ["nope"])
    assert calls == []
    assert build_core_image(paths, ["linux"]) == paths.core_img
    assert calls[0][-1] == "linux"


def test_missing_mkimage_binary(paths):
    with pytest.raises(ExternalToolError, match="grub-mkimage"):
        build_core_image(paths, ["linux"])
