import pytest

import clang_args
from clang_args import ParseOptions, build_clang_args, find_system_include_directories
from explore_errors import ConfigurationError
from target_platform import TargetPlatform


def test_fixed_prefix_for_linux():
    args = build_clang_args(TargetPlatform.parse("x86_64-unknown-linux-gnu"))
    assert args == ["-x", "c", "-std=gnu11", "-Wno-pragma-once-outside-header",
                    "--target=x86_64-unknown-linux-gnu"]


def test_windows_uses_strict_c11():
    args = build_clang_args(TargetPlatform.parse("x86_64-pc-windows-msvc"))
    assert "-std=c11" in args
    assert "--target=x86_64-pc-windows-msvc" in args


def test_user_arguments_follow_the_prefix_in_order():
    options = ParseOptions(
        user_include_directories=("include", "vendor"),
        defines=("API=1", "NDEBUG"),
        additional_arguments=("-fms-extensions",),
    )
    args = build_clang_args(TargetPlatform.parse("x86_64-unknown-linux-gnu"), options)
    assert args[5:] == ["-Iinclude", "-Ivendor", "-DAPI=1", "-DNDEBUG", "-fms-extensions"]


def test_missing_system_directories_are_skipped(tmp_path):
    existing = tmp_path / "sdk"
    existing.mkdir()
    options = ParseOptions(system_include_directories=(str(existing), str(tmp_path / "missing")))
    args = build_clang_args(TargetPlatform.parse("x86_64-unknown-linux-gnu"), options)
    assert args[-1] == f"-isystem{existing}"
    assert not any(str(tmp_path / "missing") in a for a in args)


def test_linux_system_directories_use_multiarch():
    directories = find_system_include_directories(TargetPlatform.parse("i686-unknown-linux-gnu"))
    assert directories == ["/usr/include", "/usr/include/i386-linux-gnu"]


def test_missing_apple_sdk_is_a_configuration_error(monkeypatch):
    monkeypatch.setattr(clang_args, "_xcrun_sdk_path", lambda sdk: None)
    with pytest.raises(ConfigurationError):
        find_system_include_directories(TargetPlatform.parse("aarch64-apple-darwin"))


def test_apple_frameworks_are_added(monkeypatch, tmp_path):
    headers = tmp_path / "System" / "Library" / "Frameworks" / "Metal.framework" / "Headers"
    headers.mkdir(parents=True)
    monkeypatch.setattr(clang_args, "_xcrun_sdk_path", lambda sdk: str(tmp_path))
    directories = find_system_include_directories(TargetPlatform.parse("aarch64-apple-darwin"), ("Metal",))
    assert directories == [f"{tmp_path}/usr/include", str(headers)]
