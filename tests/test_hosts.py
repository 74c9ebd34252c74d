"""
Host side: probing, kernels, multi-host layout and peer archives.
"""
from __future__ import annotations

import tarfile
from pathlib import Path

import pytest

from grub_early.core.config import EarlyConfig, Paths
from grub_early.core.errors import ConfigError, ExternalToolError, MissingInputError
from grub_early.core.hosts import multi_host, probe
from grub_early.core.hosts.kernels import discover_kernels
from grub_early.core.hosts.multi_host import (
    PeerHost,
    build_layout,
    extract_peer_archive,
    parse_other_hosts,
    peer_artifact,
    peer_sources,
)
from grub_early.core.hosts.probe import BootProbe, HostProber, bus_from_transport, host_feature_modules


# -----------------------------
# kernels
# -----------------------------

def test_discover_kernels_needs_initrd(tmp_path):
    for name in ("vmlinuz-6.1.0", "initrd.img-6.1.0", "vmlinuz-5.10.0", "initrd.img-4.19.0", "config-6.1.0"):
        (tmp_path / name).write_text("", encoding="utf-8")
    assert discover_kernels(tmp_path) == ["6.1.0"]
    assert discover_kernels(tmp_path / "absent") == []


# -----------------------------
# probing
# -----------------------------

def test_bus_from_transport():
    assert bus_from_transport("sda", "SATA") == "sata"
    assert bus_from_transport("vda", "") == "virtio"
    assert bus_from_transport("nvme0n1", "") == "nvme"
    assert bus_from_transport("mmcblk0", "") == "mmc"
    assert bus_from_transport("sdz", "") is None


def test_host_feature_modules():
    p = BootProbe(abstractions=["cryptodisk", "luks"], partmaps=["msdos", "gpt"])
    mods = host_feature_modules(EarlyConfig(themes_modules="png jpeg png"), p)
    assert mods[:3] == ["lspci", "setpci", "cmosdump"]
    for name in ("cryptodisk", "luks", "biosdisk", "part_msdos", "part_gpt", "memdisk", "tar",
                 "at_keyboard", "gfxterm_menu", "gfxmenu", "png", "jpeg"):
        assert name in mods
    assert len(mods) == len(set(mods))

    bare = host_feature_modules(EarlyConfig(no_gfxterm=True, no_alternative_input=True), BootProbe())
    assert "at_keyboard" not in bare
    assert "gfxmenu" not in bare


def test_collect_uses_grub_probe_and_lsblk(monkeypatch, caplog):
    answers = {
        "device": ["/dev/sda1", "/dev/vdb1", "/dev/sdc1"],
        "cryptodisk_uuid": ["c0ffee"],
        "hints_string": ["--hint-bios=hd0,msdos1"],
        "fs_uuid": ["1234"],
        "abstraction": ["cryptodisk luks"],
        "partmap": ["msdos"],
    }

    def fake_lines(argv):
        argv = [str(a) for a in argv]
        if argv[0].endswith("grub-probe"):
            return answers[argv[2]]
        assert argv[:2] == ["lsblk", "--inverse"]
        return {"/dev/sda1": ["sda1", "`-sda"], "/dev/vdb1": ["vdb1", "`-vdb"], "/dev/sdc1": ["sdc1", "`-sdc"]}[argv[-1]]

    def fake_run(argv, **kw):
        return {"/dev/sda": "sata", "/dev/vdb": "", "/dev/sdc": ""}[argv[-1]]

    monkeypatch.setattr(probe, "tool_lines", fake_lines)
    monkeypatch.setattr(probe, "run_tool", fake_run)
    p = HostProber(Paths()).collect()
    assert p.devices == ["/dev/sda1", "/dev/vdb1", "/dev/sdc1"]
    assert p.abstractions == ["cryptodisk", "luks"]
    assert p.hints == "--hint-bios=hd0,msdos1"
    assert p.buses == ["sata", "virtio"]
    assert "Unknown bus for boot device /dev/sdc1" in caplog.text


def test_top_level_disk_not_found(monkeypatch):
    monkeypatch.setattr(probe, "tool_lines", lambda argv: [])
    with pytest.raises(ExternalToolError, match="not a device"):
        HostProber(Paths()).top_level_disk("/dev/nope")


def test_pci_identity(monkeypatch, tmp_path):
    sys_root = tmp_path / "sys"
    (sys_root / "block").mkdir(parents=True)
    monkeypatch.setattr(probe, "tool_lines", lambda argv: ["sda1", "`-sda"])
    monkeypatch.setattr(probe.os.path, "realpath",
                        lambda p: "/sys/devices/pci0000:00/0000:00:1f.2/ata1/host0/target0:0:0/0:0:0:0/block/sda")
    values = {"00.W": "8086", "02.W": "a102", "10.L": "00000000"}
    monkeypatch.setattr(probe, "run_tool", lambda argv, **kw: values.get(argv[-1], "0"))

    ident = HostProber(Paths(), sys_root=sys_root).pci_identity("/dev/sda1")
    assert ident.bus == "00:1f.2"
    assert ident.disk == "sda"
    assert ident.registers == {"VENDOR_ID": ("00.W", "8086"), "DEVICE_ID": ("02.W", "a102")}


def test_machine_uuid(monkeypatch):
    calls = []

    def fake_dmi(args, env):
        calls.append(args)
        return "4C4C4544-0035-3010-8048-B4C04F4E3132" if "system-uuid" in args else ""

    monkeypatch.setattr(probe, "_dmidecode", fake_dmi)
    assert probe.machine_uuid(short=False) == "4C4C4544_0035_3010_8048_B4C04F4E3132"
    assert probe.machine_uuid(short=True) == "4C4C4544"


def test_machine_uuid_falls_back_to_processor_id(monkeypatch):
    def fake_dmi(args, env):
        if "processor" in args:
            return "Processor Information\n\tID: A9 06 03 00 FF FB EB BF\n"
        return ""

    monkeypatch.setattr(probe, "_dmidecode", fake_dmi)
    assert probe.machine_uuid(short=False) == "A9060300FFFBEBBF"


# -----------------------------
# multi-host
# -----------------------------

def test_parse_other_hosts():
    peers = parse_other_hosts("me:/tmp/me.tar | pc2_ab12 : /tmp/pc2.tar|laptop:/x/y.tar", "me")
    assert peers == [PeerHost("pc2_ab12", Path("/tmp/pc2.tar")), PeerHost("laptop", Path("/x/y.tar"))]
    assert parse_other_hosts("", "me") == []


@pytest.mark.parametrize("value", ["nocolon", "a:/x | ", "bad id:/x", ":/x"])
def test_parse_other_hosts_rejects(value):
    with pytest.raises(ConfigError, match="--other-hosts"):
        parse_other_hosts(value)


def test_single_host_layout():
    layout = build_layout("box")
    assert layout.multi is False
    assert layout.host_dir(Path("/m")) == Path("/m")
    assert layout.script_prefix == ""


def test_multi_host_layout_with_explicit_id():
    layout = build_layout("box", multi_hosts=True, uuid="box_1234")
    assert layout.multi is True
    assert layout.host_id == "box_1234"
    assert layout.host_dir(Path("/m")) == Path("/m/box_1234")
    assert layout.script_prefix == "/$hostname"


def test_multi_host_layout_derives_id(monkeypatch):
    monkeypatch.setattr(multi_host, "machine_uuid", lambda short: "ABCD")
    layout = build_layout("box", other_hosts="pc2:/tmp/pc2.tar")
    assert layout.host_id == "box_ABCD"
    assert layout.all_host_ids == ["box_ABCD", "pc2"]


def _peer_archive(tmp_path, files):
    src = tmp_path / "peer-src"
    src.mkdir()
    for name in files:
        (src / name).write_text(f"# {name}\n", encoding="utf-8")
    archive = tmp_path / "peer.tar"
    with tarfile.open(archive, "w") as tar:
        tar.add(str(src), arcname=".")
    return archive


def test_extract_peer_archive(tmp_path):
    archive = _peer_archive(tmp_path, ["detect.cfg", "params.cfg", "menus.cfg", "modules.lst"])
    memdisk = tmp_path / "early" / "memdisk"
    stale = memdisk / "pc2" / "old.cfg"
    stale.parent.mkdir(parents=True)
    stale.write_text("x", encoding="utf-8")

    dest = extract_peer_archive(PeerHost("pc2", archive), memdisk)
    assert dest == memdisk / "pc2"
    assert (dest / "params.cfg").is_file()
    assert not stale.exists()
    assert peer_artifact(dest) == dest / "modules.lst"
    labels = [s.label for s in peer_sources(dest, "pc2")]
    assert labels == ["pc2:params.cfg", "pc2:menus.cfg"]
    assert all(s.role == "peer" and not s.required for s in peer_sources(dest, "pc2"))
    # no leftover temporary directory
    assert sorted(p.name for p in memdisk.parent.iterdir()) == ["memdisk"]


def test_extract_peer_archive_missing_file(tmp_path):
    archive = _peer_archive(tmp_path, ["detect.cfg", "params.cfg"])
    with pytest.raises(MissingInputError, match="menus.cfg"):
        extract_peer_archive(PeerHost("pc2", archive), tmp_path / "memdisk")


def test_extract_peer_archive_absent(tmp_path):
    with pytest.raises(MissingInputError, match="archive file"):
        extract_peer_archive(PeerHost("pc2", tmp_path / "none.tar"), tmp_path / "memdisk")


def test_extract_peer_archive_rejects_escaping_members(tmp_path):
    payload = tmp_path / "evil.cfg"
    payload.write_text("x", encoding="utf-8")
    archive = tmp_path / "peer.tar"
    with tarfile.open(archive, "w") as tar:
        tar.add(str(payload), arcname="../evil.cfg")

    memdisk = tmp_path / "early" / "memdisk"
    with pytest.raises(MissingInputError, match="not readable"):
        extract_peer_archive(PeerHost("pc2", archive), memdisk)
    assert not (tmp_path / "early" / "evil.cfg").exists()
