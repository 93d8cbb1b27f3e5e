import json
import os

import pytest

from explore_config import ExploreConfiguration, config_from_dict, load_config
from explore_errors import ConfigurationError
from target_platform import TargetPlatform

LINUX_X64 = TargetPlatform.parse("x86_64-unknown-linux-gnu")
WINDOWS_X64 = TargetPlatform.parse("x86_64-pc-windows-msvc")


@pytest.fixture
def project(tmp_path):
    (tmp_path / "include").mkdir()
    (tmp_path / "include" / "api.h").write_text("void api(void);\n", encoding="utf-8")
    return tmp_path


def test_full_configuration(project):
    config = config_from_dict({
        "input_file": "include/api.h",
        "output_directory": "ast",
        "user_include_directories": ["include"],
        "defines": ["API_EXPORT="],
        "clang_arguments": ["-fms-extensions"],
        "is_enabled_find_system_headers": True,
        "functions_blocked": ["api_internal"],
        "macro_objects_allowed": ["API_VERSION"],
        "opaque_types": ["Handle"],
        "is_enabled_allow_names_with_prefixed_underscore": True,
        "is_enabled_dangling_enums": False,
        "is_enabled_macro_objects": False,
    }, project)

    assert config.input_file == str(project / "include" / "api.h")
    assert config.output_directory == str(project / "ast")
    assert config.user_include_directories == (str(project / "include"),)
    assert config.find_system_headers

    options = config.explore_options
    assert options.functions_blocked == frozenset({"api_internal"})
    assert options.macros_allowed == frozenset({"API_VERSION"})
    assert options.opaque_types == frozenset({"Handle"})
    assert options.allow_leading_underscore
    assert not options.dangling_enums
    assert not options.include_macro_constants
    assert options.include_functions

    parse_options = config.parse_options_for(LINUX_X64)
    assert parse_options.defines == ("API_EXPORT=",)
    assert parse_options.additional_arguments == ("-fms-extensions",)


def test_platform_overrides_extend_shared_settings(project):
    config = config_from_dict({
        "defines": ["SHARED"],
        "header_files_blocked": ["shared_blocked.h"],
        "platforms": {
            "x86_64-pc-windows-msvc": {
                "defines": ["WIN32"],
                "user_include_directories": ["include/win"],
                "header_files_blocked": ["posix.h"],
            },
            "x86_64-unknown-linux-gnu": {},
        },
    }, project)

    assert [t.triple for t in config.targets] == ["x86_64-pc-windows-msvc", "x86_64-unknown-linux-gnu"]
    windows = config.parse_options_for(WINDOWS_X64)
    assert windows.defines == ("SHARED", "WIN32")
    assert windows.user_include_directories == (os.path.normpath(str(project / "include" / "win")),)
    assert config.parse_options_for(LINUX_X64).defines == ("SHARED",)
    assert config.explore_options_for(WINDOWS_X64).header_files_blocked == frozenset({"shared_blocked.h", "posix.h"})
    assert config.explore_options_for(LINUX_X64).header_files_blocked == frozenset({"shared_blocked.h"})


@pytest.mark.parametrize("data", [
    {"unknown_key": True},
    {"defines": "API=1"},
    {"defines": ["API", 1]},
    {"is_enabled_functions": "yes"},
    {"input_file": "include/missing.h"},
    {"input_file": ""},
    {"platforms": {"mips-unknown-linux-gnu": {}}},
    {"platforms": {"x86_64-unknown-linux-gnu": {"opaque_types": []}}},
    {"platforms": ["x86_64-unknown-linux-gnu"]},
    {"functions_allowed": ["api"], "functions_blocked": ["api"]},
])
def test_invalid_configurations(project, data):
    with pytest.raises(ConfigurationError):
        config_from_dict(data, project)


def test_load_config_resolves_against_its_directory(project):
    path = project / "config.json"
    path.write_text(json.dumps({"input_file": "include/api.h"}), encoding="utf-8")
    assert load_config(path).input_file == str(project / "include" / "api.h")


def test_load_config_errors(project):
    broken = project / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(broken)
    with pytest.raises(ConfigurationError):
        load_config(project / "missing.json")
    root_list = project / "list.json"
    root_list.write_text("[]", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(root_list)


def test_empty_configuration_has_defaults():
    config = ExploreConfiguration()
    assert config.targets == ()
    assert config.parse_options_for(LINUX_X64).find_system_headers is False
    assert config.explore_options.dangling_enums
