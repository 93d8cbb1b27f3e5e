import platform
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from explore_errors import ConfigurationError


class TargetArchitecture(Enum):
    X86 = "x86"
    X64 = "x64"
    ARM32 = "arm32"
    ARM64 = "arm64"


class TargetOperatingSystem(Enum):
    WINDOWS = "windows"
    LINUX = "linux"
    MACOS = "macos"
    IOS = "ios"
    UNKNOWN = "unknown"


_ARCHITECTURES: Dict[str, TargetArchitecture] = {
    "i386": TargetArchitecture.X86,
    "i486": TargetArchitecture.X86,
    "i586": TargetArchitecture.X86,
    "i686": TargetArchitecture.X86,
    "x86": TargetArchitecture.X86,
    "x86_64": TargetArchitecture.X64,
    "amd64": TargetArchitecture.X64,
    "arm": TargetArchitecture.ARM32,
    "armv7": TargetArchitecture.ARM32,
    "thumbv7": TargetArchitecture.ARM32,
    "aarch64": TargetArchitecture.ARM64,
    "arm64": TargetArchitecture.ARM64,
}

_OPERATING_SYSTEMS: Dict[str, TargetOperatingSystem] = {
    "windows": TargetOperatingSystem.WINDOWS,
    "win32": TargetOperatingSystem.WINDOWS,
    "linux": TargetOperatingSystem.LINUX,
    "darwin": TargetOperatingSystem.MACOS,
    "macos": TargetOperatingSystem.MACOS,
    "macosx": TargetOperatingSystem.MACOS,
    "ios": TargetOperatingSystem.IOS,
}

# Sizes that do not depend on the target.
_FIXED_SIZES: Dict[str, int] = {
    "void": 0,
    "_Bool": 1, "bool": 1,
    "char": 1, "signed char": 1, "unsigned char": 1,
    "short": 2, "unsigned short": 2,
    "int": 4, "unsigned int": 4,
    "long long": 8, "unsigned long long": 8,
    "__int128": 16, "unsigned __int128": 16,
    "float": 4, "double": 8,
    "char16_t": 2, "char32_t": 4,
    "int8_t": 1, "uint8_t": 1,
    "int16_t": 2, "uint16_t": 2,
    "int32_t": 4, "uint32_t": 4,
    "int64_t": 8, "uint64_t": 8,
}

POINTER_SIZED_TYPEDEFS = ("size_t", "ssize_t", "intptr_t", "uintptr_t", "ptrdiff_t")

# Typedef names that resolve to primitives instead of Typedef declarations.
WELL_KNOWN_TYPEDEFS = frozenset(
    ["int8_t", "uint8_t", "int16_t", "uint16_t", "int32_t", "uint32_t",
     "int64_t", "uint64_t", "wchar_t", "char16_t", "char32_t"]
    + list(POINTER_SIZED_TYPEDEFS)
)


@dataclass(frozen=True)
class TargetPlatform:
    """A clang target triple and the bit-width facts derived from it."""

    triple: str
    architecture: TargetArchitecture = field(compare=False)
    operating_system: TargetOperatingSystem = field(compare=False)

    @classmethod
    def parse(cls, triple: str) -> "TargetPlatform":
        triple = (triple or "").strip()
        if not triple:
            raise ConfigurationError("Target triple is empty")
        parts = triple.split("-")
        architecture = _ARCHITECTURES.get(parts[0].lower())
        if architecture is None:
            raise ConfigurationError(f"Unknown target architecture '{parts[0]}' in '{triple}'")
        operating_system = TargetOperatingSystem.UNKNOWN
        for part in parts[1:]:
            # Apple triples carry a version: 'apple-darwin21.6.0', 'apple-ios15'.
            name = part.lower().rstrip("0123456789.")
            if name in _OPERATING_SYSTEMS:
                operating_system = _OPERATING_SYSTEMS[name]
                break
        if operating_system == TargetOperatingSystem.UNKNOWN:
            raise ConfigurationError(f"Unknown target operating system in '{triple}'")
        return cls(triple, architecture, operating_system)

    @classmethod
    def host(cls) -> "TargetPlatform":
        machine = platform.machine().lower()
        architecture = _ARCHITECTURES.get(machine, TargetArchitecture.X64)
        arch_name = {
            TargetArchitecture.X86: "i686",
            TargetArchitecture.X64: "x86_64",
            TargetArchitecture.ARM32: "armv7",
            TargetArchitecture.ARM64: "aarch64",
        }[architecture]
        if sys.platform.startswith("win"):
            return cls.parse(f"{arch_name}-pc-windows-msvc")
        if sys.platform == "darwin":
            return cls.parse(f"{arch_name}-apple-darwin")
        return cls.parse(f"{arch_name}-unknown-linux-gnu")

    @property
    def is_windows(self) -> bool:
        return self.operating_system == TargetOperatingSystem.WINDOWS

    @property
    def is_apple(self) -> bool:
        return self.operating_system in (TargetOperatingSystem.MACOS, TargetOperatingSystem.IOS)

    @property
    def pointer_size(self) -> int:
        if self.architecture in (TargetArchitecture.X86, TargetArchitecture.ARM32):
            return 4
        return 8

    @property
    def long_size(self) -> int:
        # LLP64 on Windows, LP64/ILP32 elsewhere.
        if self.is_windows:
            return 4
        return self.pointer_size

    def primitive_size(self, name: str) -> Optional[int]:
        """Size in bytes of a canonical primitive name on this target, or None."""
        if name in _FIXED_SIZES:
            return _FIXED_SIZES[name]
        if name in ("long", "unsigned long"):
            return self.long_size
        if name in POINTER_SIZED_TYPEDEFS:
            return self.pointer_size
        if name == "wchar_t":
            return 2 if self.is_windows else 4
        if name.endswith("*"):
            return self.pointer_size
        return None

    def __str__(self) -> str:
        return self.triple


KNOWN_TARGETS: Tuple[str, ...] = (
    "i686-pc-windows-msvc",
    "x86_64-pc-windows-msvc",
    "aarch64-pc-windows-msvc",
    "i686-unknown-linux-gnu",
    "x86_64-unknown-linux-gnu",
    "aarch64-unknown-linux-gnu",
    "x86_64-apple-darwin",
    "aarch64-apple-darwin",
    "aarch64-apple-ios",
)
