import dataclasses
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from clang_args import ParseOptions
from explore_context import ExploreOptions
from explore_errors import ConfigurationError
from target_platform import TargetPlatform

logger = logging.getLogger(__name__)

# Configuration keys that map onto ExploreOptions name sets.
_NAME_SET_KEYS = {
    "functions_allowed": "functions_allowed",
    "functions_blocked": "functions_blocked",
    "variables_allowed": "variables_allowed",
    "variables_blocked": "variables_blocked",
    "enum_constants_allowed": "enum_constants_allowed",
    "enum_constants_blocked": "enum_constants_blocked",
    "macro_objects_allowed": "macros_allowed",
    "macro_objects_blocked": "macros_blocked",
    "header_files_blocked": "header_files_blocked",
    "opaque_types": "opaque_types",
    "pass_through_types": "pass_through_types",
}

# Configuration keys that map onto ExploreOptions switches.
_SWITCH_KEYS = {
    "is_enabled_system_declarations": "include_system_declarations",
    "is_enabled_allow_names_with_prefixed_underscore": "allow_leading_underscore",
    "is_enabled_location_full_paths": "full_location_paths",
    "is_enabled_dangling_enums": "dangling_enums",
    "is_enabled_functions": "include_functions",
    "is_enabled_variables": "include_variables",
    "is_enabled_macro_objects": "include_macro_constants",
}

_DIRECTORY_KEYS = ("user_include_directories", "system_include_directories")
_STRING_LIST_KEYS = ("defines", "frameworks", "clang_arguments")
_TOP_LEVEL_KEYS = (
    {"input_file", "output_directory", "is_enabled_find_system_headers", "platforms"}
    | set(_DIRECTORY_KEYS) | set(_STRING_LIST_KEYS) | set(_NAME_SET_KEYS) | set(_SWITCH_KEYS)
)
_PLATFORM_KEYS = set(_DIRECTORY_KEYS) | set(_STRING_LIST_KEYS) | {"header_files_blocked"}


@dataclass(frozen=True)
class PlatformOverrides:
    """Settings added on top of the shared ones for a single target triple."""
    user_include_directories: Tuple[str, ...] = ()
    system_include_directories: Tuple[str, ...] = ()
    defines: Tuple[str, ...] = ()
    frameworks: Tuple[str, ...] = ()
    clang_arguments: Tuple[str, ...] = ()
    header_files_blocked: Tuple[str, ...] = ()


@dataclass
class ExploreConfiguration:
    input_file: Optional[str] = None
    output_directory: Optional[str] = None
    user_include_directories: Tuple[str, ...] = ()
    system_include_directories: Tuple[str, ...] = ()
    defines: Tuple[str, ...] = ()
    frameworks: Tuple[str, ...] = ()
    clang_arguments: Tuple[str, ...] = ()
    find_system_headers: bool = False
    explore_options: ExploreOptions = field(default_factory=ExploreOptions)
    platforms: Dict[str, PlatformOverrides] = field(default_factory=dict)

    @property
    def targets(self) -> Tuple[TargetPlatform, ...]:
        return tuple(TargetPlatform.parse(triple) for triple in self.platforms)

    def parse_options_for(self, target: TargetPlatform) -> ParseOptions:
        extra = self.platforms.get(target.triple, PlatformOverrides())
        return ParseOptions(
            user_include_directories=self.user_include_directories + extra.user_include_directories,
            system_include_directories=self.system_include_directories + extra.system_include_directories,
            defines=self.defines + extra.defines,
            frameworks=self.frameworks + extra.frameworks,
            additional_arguments=self.clang_arguments + extra.clang_arguments,
            find_system_headers=self.find_system_headers,
        )

    def explore_options_for(self, target: TargetPlatform) -> ExploreOptions:
        extra = self.platforms.get(target.triple)
        if extra is None or not extra.header_files_blocked:
            return self.explore_options
        return dataclasses.replace(
            self.explore_options,
            header_files_blocked=self.explore_options.header_files_blocked | frozenset(extra.header_files_blocked),
        )


def _string_list(key: str, value: Any) -> Tuple[str, ...]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"'{key}' must be a list of strings")
    return tuple(value)


def _resolve(base_directory: Path, path: str) -> str:
    return os.path.normpath(str(base_directory / os.path.expanduser(path)))


def _check_keys(data: Dict[str, Any], allowed, where: str):
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys in {where}: {', '.join(unknown)}")


def _platform_overrides(triple: str, data: Any, base_directory: Path) -> PlatformOverrides:
    if not isinstance(data, dict):
        raise ConfigurationError(f"Platform '{triple}' must be an object")
    _check_keys(data, _PLATFORM_KEYS, f"platform '{triple}'")
    values = {}
    for key, value in data.items():
        items = _string_list(f"platforms.{triple}.{key}", value)
        if key in _DIRECTORY_KEYS:
            items = tuple(_resolve(base_directory, d) for d in items)
        values[key] = items
    return PlatformOverrides(**values)


def config_from_dict(data: Dict[str, Any], base_directory: Union[str, Path] = ".") -> ExploreConfiguration:
    """
    Validates a configuration object and builds an ExploreConfiguration.

    Relative paths are resolved against `base_directory`, normally the
    directory holding the configuration file.
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration root must be an object")
    base_directory = Path(base_directory)
    _check_keys(data, _TOP_LEVEL_KEYS, "configuration")

    config = ExploreConfiguration()
    names: Dict[str, frozenset] = {}
    switches: Dict[str, bool] = {}
    for key, value in data.items():
        if key in ("input_file", "output_directory"):
            if not isinstance(value, str) or not value:
                raise ConfigurationError(f"'{key}' must be a non-empty string")
            setattr(config, key, _resolve(base_directory, value))
        elif key in _DIRECTORY_KEYS:
            setattr(config, key, tuple(_resolve(base_directory, d) for d in _string_list(key, value)))
        elif key in _STRING_LIST_KEYS:
            setattr(config, key, _string_list(key, value))
        elif key in _NAME_SET_KEYS:
            names[_NAME_SET_KEYS[key]] = frozenset(_string_list(key, value))
        elif key in _SWITCH_KEYS or key == "is_enabled_find_system_headers":
            if not isinstance(value, bool):
                raise ConfigurationError(f"'{key}' must be true or false")
            if key == "is_enabled_find_system_headers":
                config.find_system_headers = value
            else:
                switches[_SWITCH_KEYS[key]] = value
        elif key == "platforms":
            if not isinstance(value, dict):
                raise ConfigurationError("'platforms' must be an object keyed by target triple")
            for triple, overrides in value.items():
                TargetPlatform.parse(triple)
                config.platforms[triple] = _platform_overrides(triple, overrides, base_directory)

    if config.input_file is not None and not os.path.isfile(config.input_file):
        raise ConfigurationError(f"Input file not found: {config.input_file}")
    config.explore_options = ExploreOptions(**names, **switches).validate()
    return config


def load_config(path: Union[str, Path]) -> ExploreConfiguration:
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Unable to read configuration file '{path}': {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in '{path}': {e}") from e
    logger.debug("Loaded configuration from %s", path)
    return config_from_dict(data, path.resolve().parent)
