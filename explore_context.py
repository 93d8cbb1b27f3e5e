import enum
import logging
import os
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, FrozenSet, Hashable, Iterable, Optional, Sequence, Tuple

from clang.cindex import Cursor

from explore_errors import ConfigurationError
from out_types import IR_ARRAYS, Declaration, DeclarationKind, Location
from target_platform import TargetPlatform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExploreOptions:
    """Which declarations an exploration keeps. Read-only, shared across platform runs."""

    functions_allowed: FrozenSet[str] = frozenset()
    functions_blocked: FrozenSet[str] = frozenset()
    variables_allowed: FrozenSet[str] = frozenset()
    variables_blocked: FrozenSet[str] = frozenset()
    enum_constants_allowed: FrozenSet[str] = frozenset()
    enum_constants_blocked: FrozenSet[str] = frozenset()
    macros_allowed: FrozenSet[str] = frozenset()
    macros_blocked: FrozenSet[str] = frozenset()
    header_files_blocked: FrozenSet[str] = frozenset()
    opaque_types: FrozenSet[str] = frozenset()
    pass_through_types: FrozenSet[str] = frozenset()
    include_system_declarations: bool = False
    allow_leading_underscore: bool = False
    full_location_paths: bool = False
    dangling_enums: bool = True
    include_functions: bool = True
    include_variables: bool = True
    include_macro_constants: bool = True

    def validate(self) -> "ExploreOptions":
        pairs = (
            ("function", self.functions_allowed, self.functions_blocked),
            ("variable", self.variables_allowed, self.variables_blocked),
            ("enum constant", self.enum_constants_allowed, self.enum_constants_blocked),
            ("macro", self.macros_allowed, self.macros_blocked),
        )
        for label, allowed, blocked in pairs:
            both = sorted(allowed & blocked)
            if both:
                raise ConfigurationError(f"{label} names both allowed and blocked: {', '.join(both)}")
        return self

    def is_name_allowed(self, name: str, allowed: FrozenSet[str], blocked: FrozenSet[str]) -> bool:
        if allowed and name not in allowed:
            return False
        if name in blocked:
            return False
        if name.startswith("_") and not self.allow_leading_underscore and name not in allowed:
            return False
        return True


class VisitState(enum.Enum):
    IN_PROGRESS = "in_progress"
    EMITTED = "emitted"
    EXCLUDED = "excluded"


@dataclass
class ExploreNode:
    kind: DeclarationKind
    name: str
    cursor: Cursor


def cursor_identity(cursor: Cursor) -> Hashable:
    """A stable key for a declaration: its first declaration's file and offset."""
    canonical = cursor.canonical
    location = canonical.location
    file_name = location.file.name if location.file else ""
    return canonical.kind.name, file_name, location.offset


def _normalize(path: str) -> str:
    return os.path.normcase(os.path.abspath(path))


def _is_under(path: str, directory: str) -> bool:
    try:
        return os.path.commonpath([path, directory]) == directory
    except ValueError:
        # Different drives on Windows.
        return False


@dataclass
class ExploreContext:
    """
    State for one exploration of one translation unit on one target.

    Created fresh for every run and never shared between runs.
    """

    header_path: str
    target: TargetPlatform
    options: ExploreOptions
    include_directories: Sequence[str] = ()

    visited: Dict[Hashable, VisitState] = field(default_factory=dict)
    frontier: Deque[ExploreNode] = field(default_factory=deque)
    declarations: Dict[DeclarationKind, Dict[str, Declaration]] = field(default_factory=dict)
    typedef_names: Dict[Hashable, str] = field(default_factory=dict)
    generated_names: Dict[Hashable, str] = field(default_factory=dict)

    def __post_init__(self):
        self.header_path = os.path.abspath(self.header_path)
        self.primary_directory = _normalize(os.path.dirname(self.header_path))
        self.include_roots = [self.primary_directory] + [
            _normalize(d) for d in self.include_directories if _normalize(d) != self.primary_directory
        ]
        self.declarations = {kind: {} for kind in IR_ARRAYS}
        self._blocked_cache: Dict[str, bool] = {}

    # --- File scoping ---

    def is_external_file(self, path: Optional[str]) -> bool:
        if not path:
            return True
        return not _is_under(_normalize(os.path.dirname(path)), self.primary_directory)

    def is_blocked_file(self, path: Optional[str]) -> bool:
        if not path or not self.options.header_files_blocked:
            return False
        if path not in self._blocked_cache:
            self._blocked_cache[path] = any(
                candidate in self.options.header_files_blocked for candidate in self._relative_paths(path)
            )
        return self._blocked_cache[path]

    def _relative_paths(self, path: str) -> Iterable[str]:
        full = _normalize(path)
        for root in self.include_roots:
            if _is_under(full, root):
                yield os.path.relpath(full, root).replace(os.sep, "/")

    def location(self, cursor: Cursor) -> Location:
        location = cursor.location
        if location.file is None:
            return Location("", location.line, location.column)
        path = location.file.name
        if self.options.full_location_paths:
            file_name = os.path.abspath(path).replace(os.sep, "/")
        else:
            file_name = next(iter(self._relative_paths(path)), os.path.basename(path))
        return Location(file_name, location.line, location.column)

    # --- Visited-set and arenas ---

    def exclude(self, cursor: Cursor):
        self.visited.setdefault(cursor_identity(cursor), VisitState.EXCLUDED)

    def enqueue(self, kind: DeclarationKind, name: str, cursor: Cursor) -> bool:
        key = cursor_identity(cursor)
        if key in self.visited:
            return False
        self.visited[key] = VisitState.IN_PROGRESS
        self.frontier.append(ExploreNode(kind, name, cursor))
        return True

    def has(self, kind: DeclarationKind, name: str) -> bool:
        return name in self.declarations[kind]

    def emit(self, declaration: Declaration, cursor: Optional[Cursor] = None) -> Declaration:
        """Stores a declaration, keeping the first one when a name repeats."""
        arena = self.declarations[declaration.kind]
        if cursor is not None:
            self.visited[cursor_identity(cursor)] = VisitState.EMITTED
        existing = arena.get(declaration.name)
        if existing is not None:
            if existing != declaration:
                logger.debug("Already explored %s '%s', keeping the first", declaration.kind.value, declaration.name)
            return existing
        arena[declaration.name] = declaration
        return declaration

    def sorted_declarations(self, kind: DeclarationKind) -> Tuple[Declaration, ...]:
        arena = self.declarations[kind]
        return tuple(arena[name] for name in sorted(arena))

    # --- Names of unnamed records and enums ---

    def name_for(self, cursor: Cursor) -> Optional[str]:
        key = cursor_identity(cursor)
        return self.typedef_names.get(key) or self.generated_names.get(key)

    def generate_name(self, cursor: Cursor, prefix: str, make_name) -> str:
        """Names an unnamed declaration once; `make_name` gets the 1-based ordinal for `prefix`."""
        key = cursor_identity(cursor)
        if key not in self.generated_names:
            ordinal = sum(1 for name in self.generated_names.values() if name.startswith(prefix)) + 1
            self.generated_names[key] = make_name(ordinal)
        return self.generated_names[key]
