import pytest

from explore_errors import ConfigurationError
from target_platform import (KNOWN_TARGETS, TargetArchitecture, TargetOperatingSystem,
                             TargetPlatform)


def test_parse_linux_x64():
    target = TargetPlatform.parse("x86_64-unknown-linux-gnu")
    assert target.architecture == TargetArchitecture.X64
    assert target.operating_system == TargetOperatingSystem.LINUX
    assert target.pointer_size == 8
    assert target.primitive_size("long") == 8
    assert str(target) == "x86_64-unknown-linux-gnu"


def test_long_and_wchar_differ_on_windows():
    windows = TargetPlatform.parse("x86_64-pc-windows-msvc")
    assert windows.is_windows
    assert windows.primitive_size("long") == 4
    assert windows.primitive_size("unsigned long") == 4
    assert windows.primitive_size("wchar_t") == 2
    assert TargetPlatform.parse("x86_64-unknown-linux-gnu").primitive_size("wchar_t") == 4


def test_pointer_sized_names_follow_architecture():
    x86 = TargetPlatform.parse("i686-unknown-linux-gnu")
    assert x86.pointer_size == 4
    assert x86.primitive_size("size_t") == 4
    assert x86.primitive_size("char*") == 4
    assert x86.primitive_size("long") == 4
    assert x86.primitive_size("int64_t") == 8


def test_apple_triples_carry_versions():
    target = TargetPlatform.parse("arm64-apple-darwin21.6.0")
    assert target.architecture == TargetArchitecture.ARM64
    assert target.operating_system == TargetOperatingSystem.MACOS
    assert target.is_apple
    assert TargetPlatform.parse("aarch64-apple-ios15").operating_system == TargetOperatingSystem.IOS


@pytest.mark.parametrize("triple", ["", "   ", "mips-unknown-linux-gnu", "x86_64-unknown-none"])
def test_bad_triples_are_configuration_errors(triple):
    with pytest.raises(ConfigurationError):
        TargetPlatform.parse(triple)


def test_known_targets_parse():
    for triple in KNOWN_TARGETS:
        assert TargetPlatform.parse(triple).triple == triple


def test_unknown_primitive_has_no_size():
    assert TargetPlatform.parse("x86_64-unknown-linux-gnu").primitive_size("struct P") is None


def test_host_is_a_known_operating_system():
    assert TargetPlatform.host().operating_system != TargetOperatingSystem.UNKNOWN
