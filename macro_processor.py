import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from clang.cindex import Cursor, CursorKind, Type, TypeKind

from clang_parser import parse_header
from explore_context import ExploreContext
from explore_errors import ParseFailedError
from expr_ast import (Expr, String, is_constant_expression, literal_type, parse_macro_replacement,
                      render_expr)
from out_types import MacroConstant
from type_resolver import BUILTIN_NAMES, TypeResolver

logger = logging.getLogger(__name__)

PROBE_PREFIX = "__c2ir_macro_"
PROBE_FILE_NAME = "__c2ir_macro_probe__.c"


@dataclass
class MacroCandidate:
    name: str
    cursor: Cursor
    expr: Expr
    value: str


class MacroProcessor:
    """
    Turns object-like macros into typed constants.

    The compiler decides each macro's type: every candidate is declared in
    one probe translation unit as `static const __typeof__(NAME) x = NAME;`
    and parsed with the same arguments as the header itself.
    """

    def __init__(self, header_path: str, clang_args: Sequence[str], resolver: TypeResolver):
        self.header_path = os.path.abspath(header_path)
        self.clang_args = list(clang_args)
        self.resolver = resolver

    def candidate(self, cursor: Cursor) -> Optional[MacroCandidate]:
        tokens = list(cursor.get_tokens())
        # Flags and include guards have no replacement.
        if len(tokens) < 2:
            return None
        name_token, first = tokens[0], tokens[1]
        if first.spelling == "(" and first.extent.start.offset == name_token.extent.end.offset:
            logger.debug("Skipping function-like macro: %s", cursor.spelling)
            return None
        text = " ".join(t.spelling for t in tokens[1:])
        expr = parse_macro_replacement(text)
        if expr is None or not is_constant_expression(expr):
            logger.debug("Skipping macro '%s': '%s' is not a constant expression", cursor.spelling, text)
            return None
        return MacroCandidate(cursor.spelling, cursor, expr, render_expr(expr))

    def process(self, cursors: Sequence[Cursor], context: ExploreContext) -> List[MacroConstant]:
        candidates: Dict[str, MacroCandidate] = {}
        for cursor in cursors:
            candidate = self.candidate(cursor)
            if candidate is not None:
                candidates.setdefault(candidate.name, candidate)
        if not candidates:
            return []

        to_probe = [c for c in candidates.values() if not isinstance(c.expr, String)]
        types = self.probe_types(to_probe) if to_probe else {}

        constants = []
        for name, candidate in candidates.items():
            type_name = "char*" if isinstance(candidate.expr, String) else types.get(name)
            if type_name is None:
                logger.info("Dropping macro '%s': not a constant of scalar type", name)
                continue
            logger.debug("Found Macro Constant: %s %s = %s", type_name, name, candidate.value)
            constants.append(MacroConstant(
                name, context.location(candidate.cursor), self.resolver.target.triple,
                type_name=type_name, value=candidate.value,
            ))
        return constants

    def probe_source(self, candidates: Sequence[MacroCandidate]) -> str:
        header = self.header_path.replace("\\", "/")
        lines = [f'#include "{header}"']
        for candidate in candidates:
            name = candidate.name
            lines.append(f"static const __typeof__({name}) {PROBE_PREFIX}{name} = {name};")
        return "\n".join(lines) + "\n"

    def probe_types(self, candidates: Sequence[MacroCandidate]) -> Dict[str, Optional[str]]:
        """Asks clang for the type of each candidate; None where the probe failed."""
        probe_path = os.path.join(os.path.dirname(self.header_path), PROBE_FILE_NAME)
        # Line 1 is the #include.
        names_by_line = {i + 2: c.name for i, c in enumerate(candidates)}
        args = self.clang_args + ["-ferror-limit=0"]
        types: Dict[str, Optional[str]] = {}
        try:
            with parse_header(probe_path, args, unsaved_files=[(probe_path, self.probe_source(candidates))],
                              log_errors=False) as parsed:
                failed = set()
                for diagnostic in parsed.diagnostics:
                    if diagnostic.severity != "error" or not diagnostic.file:
                        continue
                    if os.path.basename(diagnostic.file) == PROBE_FILE_NAME and diagnostic.line in names_by_line:
                        failed.add(names_by_line[diagnostic.line])
                for cursor in parsed.translation_unit.cursor.get_children():
                    if cursor.kind != CursorKind.VAR_DECL or not cursor.spelling.startswith(PROBE_PREFIX):
                        continue
                    name = cursor.spelling[len(PROBE_PREFIX):]
                    types[name] = None if name in failed else self.type_name(cursor.type)
        except ParseFailedError as e:
            logger.warning("Could not infer macro types with clang, using literal types instead: %s", e)
            return {c.name: literal_type(c.expr) for c in candidates}
        return types

    def type_name(self, clang_type: Type) -> Optional[str]:
        canonical = clang_type.get_canonical()
        kind = canonical.kind
        if kind in BUILTIN_NAMES and kind != TypeKind.VOID:
            return BUILTIN_NAMES[kind]
        if kind == TypeKind.POINTER:
            pointee = canonical.get_pointee().get_canonical()
            if pointee.kind in BUILTIN_NAMES:
                return BUILTIN_NAMES[pointee.kind] + "*"
        if kind == TypeKind.CONSTANTARRAY:
            element = canonical.get_array_element_type().get_canonical()
            if element.kind in (TypeKind.CHAR_S, TypeKind.CHAR_U):
                return "char*"
        return None
