import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from grub_early.api.main import app
from grub_early.core.observability.metrics import reset_metrics

MODDEP = """\
normal: boot extcmd crypto terminal gettext bufio
echo: extcmd
extcmd:
boot:
test:
sleep: extcmd normal
linux: relocator boot video
relocator: mmap
mmap:
video:
search: search_fs_uuid search_fs_file search_label extcmd
search_fs_uuid:
search_fs_file:
search_label:
cryptodisk: crypto extcmd procfs
luks: cryptodisk crypto pbkdf2
crypto:
procfs:
pbkdf2: crypto
gfxterm: font video bitmap
font: bufio video
bitmap:
bufio:
at_keyboard: boot keylayouts
keylayouts:
usb_keyboard: *usb keylayouts
*usb:
usbms: scsi usb
scsi:
pata: ata
ata:
ahci: ata boot
nativedisk:
biosdisk:
part_msdos:
part_gpt:
memdisk:
tar: archelp
archelp:
datehook: datetime normal
datetime:
date: datetime normal
lspci: extcmd
setpci: extcmd
cmosdump:
cmostest: cmos
cmos:
eval:
regexp: extcmd normal
probe: extcmd
gfxterm_menu: gfxterm
gfxmenu: gfxterm video_colors trig bitmap_scale
video_colors:
trig:
bitmap_scale: bitmap
terminal:
gettext:
keystatus: extcmd
configfile:
serial: extcmd terminfo
terminfo: extcmd
"""

COMMANDS = """\
echo: echo
*linux: linux
initrd: linux
search: search
sleep: sleep
cryptomount: cryptodisk
lspci: lspci
setpci: setpci
keystatus: keystatus
date: date
loadfont: font
background_color: gfxterm
background_image: gfxterm
keymap: keylayouts
normal: normal
source: configfile
configfile: configfile
regexp: regexp
nativedisk: nativedisk
"""


@pytest.fixture(scope="session", autouse=True)
def _force_test_env():
    # Keep the runtime away from the real /usr/lib/grub and config files
    os.environ.pop("GRUB_EARLY_CONFIG", None)
    os.environ.pop("GRUB_EARLY_ARTIFACTS_DIR", None)
    os.environ.pop("GRUB_EARLY_VERBOSITY", None)
    os.environ.pop("GRUB_EARLY_API_ROOTS", None)


@pytest.fixture(autouse=True)
def _fresh_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture()
def client():
    return TestClient(app)


@pytest.fixture()
def moddir(tmp_path: Path) -> Path:
    """
    A GRUB module directory: moddep.lst, command.lst and an empty .mod file
    for every module the manifest knows about.
    """
    d = tmp_path / "i386-pc"
    d.mkdir()
    (d / "moddep.lst").write_text(MODDEP, encoding="utf-8")
    (d / "command.lst").write_text(COMMANDS, encoding="utf-8")
    names = set()
    for line in MODDEP.splitlines():
        key, _, rest = line.partition(":")
        names.add(key.strip().lstrip("*"))
        names.update(v.lstrip("*") for v in rest.split())
    for name in names:
        (d / f"{name}.mod").write_bytes(b"")
    (d / "boot.img").write_bytes(b"\0" * 512)
    return d


@pytest.fixture()
def write_script(tmp_path: Path):
    def _write(name: str, text: str) -> Path:
        p = tmp_path / name
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text, encoding="utf-8")
        return p

    return _write
