import pytest

from grub_early.core.dialect.tokens import CommandToken as T
from grub_early.core.requirements import CommandTable, ModuleMapper, builtin_rules, classify_device


@pytest.fixture()
def mapper():
    commands = CommandTable.parse("*linux: linux\ninitrd: linux\nsearch: search\nloadfont: font\n")
    return ModuleMapper(commands, builtin_rules())


def test_control_constructs_need_test(mapper):
    for name in ("if", "elif", "while", "fi", "["):
        assert mapper.map(T.control(name)) == {"test"}


def test_pager_assignment_needs_sleep(mapper):
    assert mapper.map(T.assignment("pager")) == {"sleep"}
    assert mapper.map(T.assignment("theme_name")) == frozenset()


def test_terminal_roles_exact_and_prefix(mapper):
    assert mapper.map(T.terminal_role("terminal_output", "gfxterm")) == {"gfxterm"}
    assert mapper.map(T.terminal_role("terminal_input", "at_keyboard")) == {"at_keyboard"}
    assert mapper.map(T.terminal_role("terminal_output", "serial_com0")) == {"serial"}
    assert mapper.map(T.terminal_role("terminal_input", "console")) == frozenset()


def test_firmware_disk_with_partition_map(mapper):
    assert mapper.map(T.disk_descriptor("hd0,msdos1")) == {"biosdisk", "part_msdos"}
    assert mapper.map(T.disk_descriptor("hd1,gpt2,bsd1")) == {"biosdisk", "part_gpt", "part_bsd"}


def test_other_disk_families(mapper):
    assert mapper.map(T.disk_descriptor("memdisk")) == {"memdisk"}
    assert mapper.map(T.disk_descriptor("proc")) == {"procfs"}
    assert mapper.map(T.disk_descriptor("ahci0,gpt1")) == {"biosdisk", "ahci", "part_gpt"}
    assert mapper.map(T.disk_descriptor("cryptouuid/1234abcd")) == {"cryptodisk"}
    assert mapper.map(T.disk_descriptor("$root")) == frozenset()
    assert mapper.map(T.disk_descriptor("whatever")) == frozenset()


def test_datetime_fields_need_datehook(mapper):
    assert mapper.map(T.datetime_field("HOUR")) == {"datehook"}


def test_manual_load_maps_to_itself(mapper):
    assert mapper.map(T.module_load("nativedisk")) == {"nativedisk"}


def test_plain_commands_use_command_table(mapper):
    assert mapper.map(T.command("linux")) == {"linux"}
    assert mapper.map(T.command("initrd")) == {"linux"}
    # absent: built into the kernel image
    assert mapper.map(T.command("echo")) == frozenset()


def test_mapper_is_total_on_odd_tokens():
    m = ModuleMapper()
    assert m.map(T("command", "")) == frozenset()
    assert m.map(T("module-load", "insmod", "")) == frozenset()
    assert m.map(T.disk_descriptor("")) == frozenset()


def test_classify_device_families():
    rules = builtin_rules()
    assert classify_device("hd0,msdos1", rules).kind == "firmware"
    assert classify_device("hd0,msdos1", rules).partition_maps == ("msdos",)
    assert classify_device("lvm/vg-root", rules).kind == "abstraction"
    assert classify_device("$root", rules).kind == "opaque"


def test_physical_bus_disks_need_firmware_disk_module(mapper):
    assert mapper.map(T.disk_descriptor("ata0")) == {"biosdisk", "pata"}
    assert mapper.map(T.disk_descriptor("ata0,msdos1")) == {"biosdisk", "pata", "part_msdos"}
    assert mapper.map(T.disk_descriptor("scsi0,msdos1")) == {"biosdisk", "part_msdos"}
    assert mapper.map(T.disk_descriptor("usb0")) == {"biosdisk", "usbms"}
    assert classify_device("scsi0", builtin_rules()).kind == "native"
