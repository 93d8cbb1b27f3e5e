import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from explore_errors import ConfigurationError
from target_platform import TargetArchitecture, TargetOperatingSystem, TargetPlatform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParseOptions:
    user_include_directories: Tuple[str, ...] = ()
    system_include_directories: Tuple[str, ...] = ()
    defines: Tuple[str, ...] = ()
    frameworks: Tuple[str, ...] = ()
    additional_arguments: Tuple[str, ...] = ()
    find_system_headers: bool = False


def build_clang_args(target: TargetPlatform, options: Optional[ParseOptions] = None) -> List[str]:
    """
    Builds the argument list handed to clang for one target.

    The order is fixed so that two runs with the same options produce the
    same translation unit.
    """
    options = options or ParseOptions()
    std = "-std=gnu11" if target.operating_system == TargetOperatingSystem.LINUX else "-std=c11"
    args = ["-x", "c", std, "-Wno-pragma-once-outside-header", f"--target={target.triple}"]

    for directory in options.user_include_directories:
        args.append(f"-I{directory}")
    for define in options.defines:
        args.append(f"-D{define}")
    args.extend(options.additional_arguments)

    system_directories = list(options.system_include_directories)
    if options.find_system_headers:
        for directory in find_system_include_directories(target, options.frameworks):
            if directory not in system_directories:
                system_directories.append(directory)
    for directory in system_directories:
        if os.path.isdir(directory):
            args.append(f"-isystem{directory}")
        else:
            logger.debug("Skipping missing system include directory: %s", directory)
    return args


def find_system_include_directories(target: TargetPlatform, frameworks: Tuple[str, ...] = ()) -> List[str]:
    """Discovers the host SDK include directories for the target operating system."""
    system = target.operating_system
    if system == TargetOperatingSystem.LINUX:
        return _linux_include_directories(target)
    if system in (TargetOperatingSystem.MACOS, TargetOperatingSystem.IOS):
        return _apple_include_directories(target, frameworks)
    if system == TargetOperatingSystem.WINDOWS:
        return _windows_include_directories()
    return []


def _linux_include_directories(target: TargetPlatform) -> List[str]:
    multiarch = {
        TargetArchitecture.X86: "i386-linux-gnu",
        TargetArchitecture.X64: "x86_64-linux-gnu",
        TargetArchitecture.ARM32: "arm-linux-gnueabihf",
        TargetArchitecture.ARM64: "aarch64-linux-gnu",
    }[target.architecture]
    return ["/usr/include", f"/usr/include/{multiarch}"]


def _apple_include_directories(target: TargetPlatform, frameworks: Tuple[str, ...]) -> List[str]:
    sdk = "iphoneos" if target.operating_system == TargetOperatingSystem.IOS else "macosx"
    sdk_path = _xcrun_sdk_path(sdk)
    if not sdk_path:
        raise ConfigurationError(f"Could not find the '{sdk}' SDK; is Xcode installed?")
    directories = [f"{sdk_path}/usr/include"]
    for framework in frameworks:
        headers = Path(sdk_path) / "System" / "Library" / "Frameworks" / f"{framework}.framework" / "Headers"
        if not headers.exists():
            raise ConfigurationError(f"Framework '{framework}' not found in {sdk_path}")
        directories.append(str(headers))
    return directories


def _xcrun_sdk_path(sdk: str) -> Optional[str]:
    try:
        out = subprocess.check_output(["xcrun", "--sdk", sdk, "--show-sdk-path"])
        return out.decode().strip() or None
    except (OSError, subprocess.CalledProcessError):
        return None


def _windows_include_directories() -> List[str]:
    program_files = os.getenv("ProgramFiles(x86)") or "C:/Program Files (x86)"
    kits = Path(program_files) / "Windows Kits" / "10" / "Include"
    if not kits.exists():
        raise ConfigurationError(f"Could not find the Windows SDK in {kits}")

    def version_key(path: Path):
        return tuple(int(p) for p in path.name.split(".") if p.isdigit())

    versions = sorted((p for p in kits.iterdir() if p.is_dir()), key=version_key)
    if not versions:
        raise ConfigurationError(f"No Windows SDK versions found in {kits}")
    latest = versions[-1]
    return [str(latest / "ucrt"), str(latest / "um"), str(latest / "shared")]
