import os

import pytest
from clang.cindex import CursorKind

from clang_args import build_clang_args
from clang_parser import ParseDiagnostic, parse_header
from explore_errors import ParseFailedError
from target_platform import TargetPlatform

ARGS = build_clang_args(TargetPlatform.parse("x86_64-unknown-linux-gnu"))


def test_missing_header_is_not_found(tmp_path):
    with pytest.raises(FileNotFoundError):
        with parse_header(str(tmp_path / "missing.h"), ARGS):
            pass


def test_fatal_diagnostics_fail_the_parse(libclang, headers_dir):
    with pytest.raises(ParseFailedError) as excinfo:
        with parse_header(os.path.join(headers_dir, "missing_include.h"), ARGS):
            pass
    assert any("does_not_exist.h" in d for d in excinfo.value.diagnostics)


def test_errors_are_advisory(libclang, headers_dir, caplog):
    with parse_header(os.path.join(headers_dir, "advisory_error.h"), ARGS) as parsed:
        assert parsed.has_errors
        names = [c.spelling for c in parsed.translation_unit.cursor.get_children()
                 if c.kind == CursorKind.FUNCTION_DECL]
        assert "still_parsed" in names
    assert "Bindings may be incomplete" in caplog.text


def test_unsaved_files_need_no_file_on_disk(libclang, tmp_path):
    path = str(tmp_path / "virtual.h")
    with parse_header(path, ARGS, unsaved_files=[(path, "int virtual_api(void);\n")]) as parsed:
        assert not parsed.diagnostics
        names = [c.spelling for c in parsed.translation_unit.cursor.get_children()]
        assert "virtual_api" in names


def test_diagnostic_text():
    assert str(ParseDiagnostic("error", "boom", "a.h", 3)) == "a.h:3: error: boom"
    assert str(ParseDiagnostic("warning", "careful")) == "warning: careful"


def test_translation_unit_is_dropped_when_the_block_exits(libclang, tmp_path):
    path = str(tmp_path / "virtual.h")
    with parse_header(path, ARGS, unsaved_files=[(path, "int virtual_api(void);\n")]) as parsed:
        assert parsed.translation_unit is not None
    assert parsed.translation_unit is None

    with pytest.raises(RuntimeError):
        with parse_header(path, ARGS, unsaved_files=[(path, "int virtual_api(void);\n")]) as failed:
            raise RuntimeError("explore failed")
    assert failed.translation_unit is None
