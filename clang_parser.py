import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence

from clang.cindex import (Config, Diagnostic, Index, LibclangError, TranslationUnit,
                          TranslationUnitLoadError)

from explore_errors import ParseFailedError

logger = logging.getLogger(__name__)

PARSE_OPTIONS = (
    TranslationUnit.PARSE_DETAILED_PROCESSING_RECORD
    | TranslationUnit.PARSE_SKIP_FUNCTION_BODIES
)

_SEVERITIES = {
    Diagnostic.Ignored: "ignored",
    Diagnostic.Note: "note",
    Diagnostic.Warning: "warning",
    Diagnostic.Error: "error",
    Diagnostic.Fatal: "fatal",
}

_configured = False


def configure_libclang():
    """Points the clang bindings at $LIBCLANG_PATH when it is set."""
    global _configured
    if _configured or Config.loaded:
        return
    library = os.getenv("LIBCLANG_PATH")
    if library:
        if os.path.isdir(library):
            Config.set_library_path(library)
        else:
            Config.set_library_file(library)
    _configured = True


def libclang_available() -> bool:
    configure_libclang()
    try:
        Index.create()
    except (LibclangError, OSError):
        return False
    return True


@dataclass(frozen=True)
class ParseDiagnostic:
    severity: str
    message: str
    file: Optional[str] = None
    line: int = 0

    def __str__(self) -> str:
        if self.file:
            return f"{self.file}:{self.line}: {self.severity}: {self.message}"
        return f"{self.severity}: {self.message}"


@dataclass
class ParsedHeader:
    path: str
    translation_unit: Optional[TranslationUnit]
    diagnostics: List[ParseDiagnostic] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(d.severity in ("error", "fatal") for d in self.diagnostics)


def collect_diagnostics(translation_unit: TranslationUnit) -> List[ParseDiagnostic]:
    diagnostics = []
    for diag in translation_unit.diagnostics:
        location = diag.location
        diagnostics.append(ParseDiagnostic(
            severity=_SEVERITIES.get(diag.severity, "unknown"),
            message=diag.spelling,
            file=location.file.name if location.file else None,
            line=location.line,
        ))
    return diagnostics


@contextmanager
def parse_header(header_path: str, clang_args: Sequence[str],
                 unsaved_files: Optional[Sequence[tuple]] = None,
                 log_errors: bool = True) -> Iterator[ParsedHeader]:
    """
    Parses a header with libclang and yields the translation unit.

    Fatal diagnostics fail the parse before anything is explored; errors are
    advisory and only logged. The yielded header drops its translation unit
    when the block exits, whether or not it raised.
    """
    if unsaved_files is None and not os.path.exists(header_path):
        raise FileNotFoundError(f"Header file not found: {header_path}")

    configure_libclang()
    index = Index.create()
    parsed = None
    try:
        try:
            translation_unit = index.parse(
                header_path,
                args=list(clang_args),
                unsaved_files=unsaved_files,
                options=PARSE_OPTIONS,
            )
        except TranslationUnitLoadError as e:
            raise ParseFailedError(f"Failed to parse {header_path}: {e}") from e

        diagnostics = collect_diagnostics(translation_unit)
        fatal = [str(d) for d in diagnostics if d.severity == "fatal"]
        if fatal:
            raise ParseFailedError(f"Fatal errors while parsing {header_path}", fatal)
        errors = [d for d in diagnostics if d.severity == "error"]
        if errors and log_errors:
            logger.warning("Clang errors encountered in %s. Bindings may be incomplete.", header_path)
            for d in errors:
                logger.warning("  %s", d)

        parsed = ParsedHeader(header_path, translation_unit, diagnostics)
        yield parsed
    finally:
        if parsed is not None:
            parsed.translation_unit = None
