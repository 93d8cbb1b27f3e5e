import json
import os

import pytest

from explore_config import ExploreConfiguration
from ir_serializer import read_ir
from main import apply_arguments, build_parser, explore_targets, main
from target_platform import TargetPlatform

from conftest import HEADERS_DIR, LINUX_X64, LINUX_X86


def test_arguments_extend_the_configuration(tmp_path):
    args = build_parser().parse_args([
        "api.h", "-o", str(tmp_path), "-I", "include", "-D", "API=1",
        "--opaque", "Handle", "--block-function", "api_internal", "--no-dangling-enums", "--allow-underscore",
    ])
    config = ExploreConfiguration(defines=("SHARED",))
    config = apply_arguments(config, args)

    assert config.input_file == os.path.abspath("api.h")
    assert config.output_directory == str(tmp_path)
    assert config.user_include_directories == (os.path.abspath("include"),)
    assert config.defines == ("SHARED", "API=1")
    assert config.explore_options.opaque_types == frozenset({"Handle"})
    assert config.explore_options.functions_blocked == frozenset({"api_internal"})
    assert not config.explore_options.dangling_enums
    assert config.explore_options.allow_leading_underscore


def test_missing_header_exits_with_failure(tmp_path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main([str(tmp_path / "missing.h")])
    assert excinfo.value.code == 1
    assert "Header file not found" in capsys.readouterr().err


def test_header_is_required():
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 2


def test_unknown_target_exits_with_failure(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main([os.path.join(HEADERS_DIR, "example.h"), "-t", "mips-unknown-linux-gnu"])
    assert excinfo.value.code == 1


def test_one_file_per_target(libclang, tmp_path, capsys):
    main([os.path.join(HEADERS_DIR, "example.h"), "-o", str(tmp_path), "-t", LINUX_X64, "-t", LINUX_X86, "-q"])

    for triple, pointer_size in ((LINUX_X64, 8), (LINUX_X86, 4)):
        path = tmp_path / f"{triple}.json"
        ir = read_ir(path)
        assert ir.platform == triple
        assert ir.pointer_size == pointer_size
        assert [r.name for r in ir.records] == ["P"]
        assert json.loads(path.read_text(encoding="utf-8"))["platform"] == triple

    out = capsys.readouterr().out
    assert "--- Exploration Summary ---" in out
    assert f"{LINUX_X86}: Functions: 2" in out


def test_failures_are_reported_per_target(libclang, tmp_path):
    targets = [TargetPlatform.parse(LINUX_X64), TargetPlatform.parse(LINUX_X86)]
    runs = explore_targets(os.path.join(HEADERS_DIR, "complex.h"), targets)
    assert [r.target.triple for r in runs] == [LINUX_X64, LINUX_X86]
    assert not any(r.succeeded for r in runs)
    assert all("COMPLEX" in r.error for r in runs)

    with pytest.raises(SystemExit) as excinfo:
        main([os.path.join(HEADERS_DIR, "complex.h"), "-o", str(tmp_path), "-t", LINUX_X64, "-q"])
    assert excinfo.value.code == 1
    assert not (tmp_path / f"{LINUX_X64}.json").exists()


def test_targets_can_run_in_parallel(libclang):
    targets = [TargetPlatform.parse(LINUX_X64), TargetPlatform.parse(LINUX_X86)]
    header = os.path.join(HEADERS_DIR, "layout.h")
    parallel = explore_targets(header, targets, jobs=2)
    serial = explore_targets(header, targets)
    assert [r.ir for r in parallel] == [r.ir for r in serial]
    assert parallel[0].ir.find("Packet").size == 24
    assert parallel[1].ir.find("Packet").size == 12


def test_configuration_file_drives_the_run(libclang, tmp_path):
    config = tmp_path / "config.json"
    config.write_text(json.dumps({
        "input_file": os.path.join(HEADERS_DIR, "cascade.h"),
        "output_directory": str(tmp_path / "ast"),
        "functions_blocked": ["hidden"],
        "platforms": {LINUX_X64: {}},
    }), encoding="utf-8")

    main(["-c", str(config), "-q"])

    ir = read_ir(tmp_path / "ast" / f"{LINUX_X64}.json")
    assert [f.name for f in ir.functions] == ["visible"]
