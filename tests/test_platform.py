import pytest

from coreos_updates.platform import find_flag_value, read_id

FLAG = "ignition.platform.id"


@pytest.mark.parametrize(
    "cmdline, expected",
    [
        ("", None),
        ("foo=bar", None),
        ("ignition.platform.id", None),
        ("ignition.platform.id=", None),
        ("ignition.platform.id=\t", None),
        ("ignition.platform.id=ec2", "ec2"),
        ("ignition.platform.id=\tec2", "ec2"),
        ("ignition.platform.id=ec2\n", "ec2"),
        ("foo=bar ignition.platform.id=ec2", "ec2"),
        ("ignition.platform.id=ec2 foo=bar", "ec2"),
    ],
)
def test_find_flag(cmdline, expected):
    assert find_flag_value(FLAG, cmdline) == expected


def test_first_non_empty_value_wins():
    assert find_flag_value(FLAG, "ignition.platform.id= ignition.platform.id=ec2") == "ec2"


def test_read_id(tmp_path):
    path = tmp_path / "cmdline"
    path.write_text("root=/dev/sda ignition.platform.id=qemu quiet\n")
    assert read_id(str(path)) == "qemu"


def test_read_id_missing_flag(tmp_path):
    path = tmp_path / "cmdline"
    path.write_text("root=/dev/sda quiet\n")
    with pytest.raises(ValueError, match="could not find flag 'ignition.platform.id'"):
        read_id(path)


def test_read_id_missing_file(tmp_path):
    with pytest.raises(OSError, match="failed to read cmdline file"):
        read_id(tmp_path / "absent")