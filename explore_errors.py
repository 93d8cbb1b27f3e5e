from typing import Optional, Sequence


class ExploreError(RuntimeError):
    """Base class for errors that abort exploration of one translation unit."""


class UnsupportedConstructError(ExploreError):
    """A cursor kind or type kind the explorer has no handling for."""

    def __init__(self, message: str, kind: Optional[str] = None, location: Optional[str] = None):
        if kind and location:
            message = f"{message} (kind: {kind}, at {location})"
        elif kind:
            message = f"{message} (kind: {kind})"
        super().__init__(message)
        self.kind = kind
        self.location = location


class UnresolvableTypeError(ExploreError):
    """A type whose size or layout cannot be determined for the target."""

    def __init__(self, message: str, spelling: Optional[str] = None, location: Optional[str] = None):
        if spelling and location:
            message = f"{message}: '{spelling}' at {location}"
        elif spelling:
            message = f"{message}: '{spelling}'"
        super().__init__(message)
        self.spelling = spelling
        self.location = location


class ParseFailedError(ExploreError):
    """Clang could not produce a usable translation unit."""

    def __init__(self, message: str, diagnostics: Sequence[str] = ()):
        if diagnostics:
            message = message + "\n" + "\n".join(f"  {d}" for d in diagnostics)
        super().__init__(message)
        self.diagnostics = tuple(diagnostics)


class ConfigurationError(ValueError):
    """Bad paths, unknown targets or contradictory options."""
