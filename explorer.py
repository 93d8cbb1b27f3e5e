import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, Hashable, List, Optional, Sequence

from clang.cindex import Cursor, CursorKind, LinkageKind, TranslationUnit, Type, TypeKind
from num2words import num2words

from explore_context import ExploreContext, ExploreNode, ExploreOptions, cursor_identity
from explore_errors import UnresolvableTypeError, UnsupportedConstructError
from macro_processor import MacroProcessor
from out_types import (
    NO_LOCATION, DeclarationKind, Enum, EnumValue, Function, FunctionPointer, HeaderIR,
    IR_ARRAYS, OpaqueType, Parameter, Record, RecordField, TypeRef, TypeRefKind, Typedef, Variable
)
from target_platform import TargetPlatform
from type_resolver import FUNCTION_KINDS, TypeResolver, is_unnamed, location_of

logger = logging.getLogger(__name__)

_ROOT_KINDS = (
    CursorKind.FUNCTION_DECL,
    CursorKind.VAR_DECL,
    CursorKind.ENUM_DECL,
    CursorKind.MACRO_DEFINITION,
)

_ARRAY_KINDS = (
    TypeKind.CONSTANTARRAY,
    TypeKind.INCOMPLETEARRAY,
    TypeKind.VARIABLEARRAY,
    TypeKind.DEPENDENTSIZEDARRAY,
)

_TYPEDEF_REF_KINDS = {
    DeclarationKind.TYPEDEF: TypeRefKind.TYPEDEF,
    DeclarationKind.OPAQUE_TYPE: TypeRefKind.OPAQUE_TYPE,
    DeclarationKind.FUNCTION_POINTER: TypeRefKind.FUNCTION_POINTER,
}


def words(number: int) -> str:
    """Spells a number for use inside an identifier: 21 -> 'twenty_one'."""
    return re.sub(r"[^0-9a-zA-Z]+", "_", num2words(number)).strip("_")


def _file_stem(path: str) -> str:
    stem = os.path.splitext(os.path.basename(path))[0]
    return re.sub(r"\W", "_", stem) or "header"


def _signed64(value: int) -> int:
    if value >= 1 << 63:
        value -= 1 << 64
    return value


def _is_unnamed_field(cursor: Cursor) -> bool:
    spelling = cursor.spelling
    return not spelling or "(anonymous" in spelling or "(unnamed" in spelling


@dataclass
class _RecordScope:
    """Collects the anonymous records owned by the record being built."""
    name: str
    nested: List[Record] = field(default_factory=list)
    names: Dict[Hashable, str] = field(default_factory=dict)
    anonymous_count: int = 0

    def next_anonymous_name(self, kind: str) -> str:
        self.anonymous_count += 1
        return f"{self.name}_anonymous_{kind}_{words(self.anonymous_count)}"


class Explorer:
    """
    Walks a clang translation unit from its public surface and builds the IR.

    Roots are exported functions and variables (and enums, when dangling
    enums are enabled). Every type they depend on is explored once, by cursor
    identity, through a frontier queue so that cyclic declarations terminate.
    """

    def __init__(self, target: TargetPlatform, options: Optional[ExploreOptions] = None,
                 include_directories: Sequence[str] = (), clang_args: Sequence[str] = ()):
        self.target = target
        self.options = options or ExploreOptions()
        self.include_directories = tuple(include_directories)
        self.clang_args = list(clang_args)
        self.resolver = TypeResolver(target)
        self._handlers = {
            DeclarationKind.FUNCTION: self._explore_function,
            DeclarationKind.VARIABLE: self._explore_variable,
            DeclarationKind.RECORD: self._explore_record,
            DeclarationKind.ENUM: self._explore_enum,
            DeclarationKind.TYPEDEF: self._explore_typedef,
        }

    def explore(self, translation_unit: TranslationUnit, header_path: Optional[str] = None) -> HeaderIR:
        header_path = header_path or translation_unit.spelling
        context = ExploreContext(header_path, self.target, self.options, self.include_directories)

        macros = self._collect_roots(context, translation_unit.cursor)
        while context.frontier:
            self._explore_node(context, context.frontier.popleft())

        if macros and self.options.include_macro_constants:
            processor = MacroProcessor(context.header_path, self.clang_args, self.resolver)
            for constant in processor.process(macros, context):
                context.emit(constant)

        return self._build_ir(context)

    # --- Roots ---

    def _collect_roots(self, context: ExploreContext, root: Cursor) -> List[Cursor]:
        children = list(root.get_children())

        # Typedefs give their name to the anonymous record or enum they alias.
        for cursor in children:
            if cursor.kind == CursorKind.TYPEDEF_DECL:
                self._remember_typedef_name(context, cursor)

        macros = []
        for cursor in children:
            kind = cursor.kind
            if kind not in _ROOT_KINDS:
                continue
            file = cursor.location.file
            if file is None:
                continue
            path = file.name
            if not self.options.include_system_declarations and context.is_external_file(path):
                continue
            if context.is_blocked_file(path):
                logger.debug("Excluding '%s' from blocked header %s", cursor.spelling, path)
                if kind in (CursorKind.FUNCTION_DECL, CursorKind.VAR_DECL):
                    context.exclude(cursor)
                continue

            if kind == CursorKind.FUNCTION_DECL:
                self._add_function_root(context, cursor)
            elif kind == CursorKind.VAR_DECL:
                self._add_variable_root(context, cursor)
            elif kind == CursorKind.ENUM_DECL:
                self._add_enum_root(context, cursor)
            elif kind == CursorKind.MACRO_DEFINITION:
                if self._is_macro_allowed(cursor):
                    macros.append(cursor)
        return macros

    def _remember_typedef_name(self, context: ExploreContext, cursor: Cursor):
        underlying = self.resolver.unwrap(cursor.underlying_typedef_type)
        if underlying.kind not in (TypeKind.RECORD, TypeKind.ENUM):
            return
        declaration = underlying.get_declaration()
        definition = declaration.get_definition() or declaration
        if is_unnamed(definition):
            context.typedef_names.setdefault(cursor_identity(definition), cursor.spelling)

    def _add_function_root(self, context: ExploreContext, cursor: Cursor):
        if not self.options.include_functions or cursor.linkage != LinkageKind.EXTERNAL:
            return
        name = cursor.spelling
        if not self.options.is_name_allowed(name, self.options.functions_allowed, self.options.functions_blocked):
            logger.debug("Excluding function '%s'", name)
            context.exclude(cursor)
            return
        context.enqueue(DeclarationKind.FUNCTION, name, cursor)

    def _add_variable_root(self, context: ExploreContext, cursor: Cursor):
        if not self.options.include_variables or cursor.linkage != LinkageKind.EXTERNAL:
            return
        name = cursor.spelling
        if not self.options.is_name_allowed(name, self.options.variables_allowed, self.options.variables_blocked):
            logger.debug("Excluding variable '%s'", name)
            context.exclude(cursor)
            return
        context.enqueue(DeclarationKind.VARIABLE, name, cursor)

    def _add_enum_root(self, context: ExploreContext, cursor: Cursor):
        if not self.options.dangling_enums or not cursor.is_definition():
            return
        if is_unnamed(cursor):
            name = context.name_for(cursor)
            if name is None:
                if not self._enum_values(context, cursor):
                    logger.debug("Skipping anonymous enum at %s with no allowed constants", location_of(cursor))
                    return
                name = self._file_level_anonymous_name(context, cursor, "enum")
        else:
            name = cursor.spelling
        if name.startswith("_") and not self.options.allow_leading_underscore:
            return
        context.enqueue(DeclarationKind.ENUM, name, cursor)

    def _is_macro_allowed(self, cursor: Cursor) -> bool:
        return self.options.is_name_allowed(cursor.spelling, self.options.macros_allowed, self.options.macros_blocked)

    # --- Frontier ---

    def _explore_node(self, context: ExploreContext, node: ExploreNode):
        handler = self._handlers.get(node.kind)
        if handler is None:
            raise UnsupportedConstructError(
                f"No handler for declaration '{node.name}'", node.kind.value, location_of(node.cursor))
        logger.debug("Exploring %s: %s", node.kind.value, node.name)
        handler(context, node)

    def _explore_function(self, context: ExploreContext, node: ExploreNode):
        cursor = node.cursor
        function_type = self.resolver.unwrap(cursor.type)
        logger.debug("Found Function: %s", node.name)
        return_type = self.visit_type(context, cursor.result_type, cursor)
        parameters = tuple(
            Parameter(p.spelling or f"arg{i}", self.visit_type(context, p.type, p))
            for i, p in enumerate(cursor.get_arguments())
        )
        is_variadic = function_type.kind == TypeKind.FUNCTIONPROTO and function_type.is_function_variadic()
        context.emit(Function(
            node.name, context.location(cursor), self.target.triple,
            return_type=return_type,
            parameters=parameters,
            calling_convention=calling_convention,
            is_variadic=is_variadic,
        ), cursor)

    def _explore_variable(self, context: ExploreContext, node: ExploreNode):
        logger.debug("Found Variable: %s", node.name)
        type_ref = self.visit_type(context, node.cursor.type, node.cursor)
        context.emit(Variable(node.name, context.location(node.cursor), self.target.triple, type_ref), node.cursor)

    def _explore_record(self, context: ExploreContext, node: ExploreNode):
        logger.debug("Found %s: %s", "Union" if node.cursor.kind == CursorKind.UNION_DECL else "Struct", node.name)
        context.emit(self._build_record(context, node.cursor, node.name), node.cursor)

    def _explore_enum(self, context: ExploreContext, node: ExploreNode):
        cursor = node.cursor
        logger.debug("Found Enum: %s", node.name)
        context.emit(Enum(
            node.name, context.location(cursor), self.target.triple,
            integer_type=self.resolver.enum_integer_ref(cursor),
            values=tuple(self._enum_values(context, cursor)),
        ), cursor)

    def _explore_typedef(self, context: ExploreContext, node: ExploreNode):
        cursor = node.cursor
        location = context.location(cursor)
        classification = self.resolver.classify_typedef(cursor)
        if classification == DeclarationKind.OPAQUE_TYPE:
            logger.debug("Found Opaque Type: %s", node.name)
            size, alignment = self.resolver.layout(cursor.type, required=False)
            context.emit(OpaqueType(node.name, location, self.target.triple, size, alignment), cursor)
        elif classification == DeclarationKind.FUNCTION_POINTER:
            logger.debug("Found Function Pointer: %s", node.name)
            function_type = self._function_type_behind(cursor.underlying_typedef_type)
            parameter_names = [c.spelling for c in cursor.get_children() if c.kind == CursorKind.PARM_DECL]
            context.emit(self._function_pointer(
                context, function_type, cursor, node.name, True, parameter_names), cursor)
        else:
            logger.debug("Found Typedef: %s", node.name)
            underlying = self.visit_type(context, cursor.underlying_typedef_type, cursor)
            context.emit(Typedef(node.name, location, self.target.triple, underlying), cursor)

    def _enum_values(self, context: ExploreContext, cursor: Cursor) -> List[EnumValue]:
        # Only anonymous enums are groups of constants; named enums keep every value.
        filtered = is_unnamed(cursor) and cursor_identity(cursor) not in context.typedef_names
        values = []
        for child in cursor.get_children():
            if child.kind != CursorKind.ENUM_CONSTANT_DECL:
                continue
            if filtered and not self.options.is_name_allowed(
                    child.spelling, self.options.enum_constants_allowed, self.options.enum_constants_blocked):
                continue
            values.append(EnumValue(child.spelling, _signed64(child.enum_value)))
        return values

    # --- Records ---

    def _build_record(self, context: ExploreContext, cursor: Cursor, name: str) -> Record:
        is_union = cursor.kind == CursorKind.UNION_DECL
        size, alignment = self.resolver.layout(cursor.type)
        scope = _RecordScope(name)

        members = []
        for field_cursor in cursor.type.get_fields():
            anonymous = _is_unnamed_field(field_cursor)
            if anonymous and field_cursor.is_bitfield():
                # Unnamed bit-fields only pad.
                continue
            field_name = None if anonymous else field_cursor.spelling
            type_ref = self.visit_type(context, field_cursor.type, field_cursor, scope, field_name)
            if anonymous:
                field_name = type_ref.name[len(name) + 1:] if type_ref.name.startswith(name + "_") else type_ref.name
            members.append((field_cursor, field_name, type_ref, anonymous))

        layouts = self.resolver.field_layout(
            name, [(c, type_ref.size) for c, _, type_ref, _ in members], size, is_union)
        fields = tuple(
            RecordField(
                field_name, type_ref, layout.offset, layout.padding,
                is_wrapped=self.resolver.is_wrapped_array(c.type),
                is_anonymous=anonymous,
                bit_width=layout.bit_width,
                bit_offset=layout.bit_offset,
            )
            for (c, field_name, type_ref, anonymous), layout in zip(members, layouts)
        )
        return Record(
            name, context.location(cursor), self.target.triple,
            size=size, alignment=alignment, fields=fields, is_union=is_union,
            nested_records=tuple(scope.nested),
        )

    def _nested_record_ref(self, context: ExploreContext, definition: Cursor, clang_type: Type,
                           spelling: str, scope: _RecordScope, field_name: Optional[str]) -> TypeRef:
        key = cursor_identity(definition)
        kind = "union" if definition.kind == CursorKind.UNION_DECL else "struct"
        if key not in scope.names:
            if field_name:
                nested_name = f"{scope.name}_{field_name}_{kind.capitalize()}"
            else:
                nested_name = scope.next_anonymous_name(kind)
            scope.names[key] = nested_name
            scope.nested.append(self._build_record(context, definition, nested_name))
        size, alignment = self.resolver.layout(clang_type)
        return TypeRef(scope.names[key], TypeRefKind.RECORD, size, alignment, spelling)

    # --- Types ---

    def visit_type(self, context: ExploreContext, clang_type: Type, owner: Cursor,
                   scope: Optional[_RecordScope] = None, field_name: Optional[str] = None) -> TypeRef:
        """
        Resolves a type to a TypeRef and queues the declarations it depends on.

        `owner` is the cursor the type was found on, used for error locations.
        `scope` and `field_name` are set while building a record so that
        anonymous records declared inline are owned by that record.
        """
        spelling = clang_type.spelling
        clang_type = self.resolver.unwrap(clang_type)
        kind = clang_type.kind

        if self.resolver.is_builtin(clang_type):
            return self.resolver.primitive_ref(clang_type, spelling)
        if kind == TypeKind.TYPEDEF:
            if self.resolver.is_well_known(clang_type):
                return self.resolver.well_known_ref(clang_type, spelling)
            return self._visit_typedef_type(context, clang_type, spelling, owner)
        if kind == TypeKind.POINTER:
            pointee = self.resolver.unwrap(clang_type.get_pointee())
            if pointee.kind in FUNCTION_KINDS:
                function_pointer = self._anonymous_function_pointer(context, pointee, owner)
                size, alignment = self.resolver.layout(clang_type)
                return TypeRef(function_pointer.name, TypeRefKind.FUNCTION_POINTER, size, alignment, spelling)
            inner = self.visit_type(context, clang_type.get_pointee(), owner, scope, field_name)
            return self.resolver.pointer_ref(clang_type, inner, spelling)
        if kind in _ARRAY_KINDS:
            if kind in (TypeKind.VARIABLEARRAY, TypeKind.DEPENDENTSIZEDARRAY):
                raise UnresolvableTypeError("Variable length arrays have no fixed size", spelling, location_of(owner))
            inner = self.visit_type(context, clang_type.get_array_element_type(), owner, scope, field_name)
            return self.resolver.array_ref(clang_type, inner, spelling)
        if kind == TypeKind.RECORD:
            return self._visit_record_type(context, clang_type, spelling, scope, field_name)
        if kind == TypeKind.ENUM:
            return self._visit_enum_type(context, clang_type, spelling, scope, field_name)
        if kind in FUNCTION_KINDS:
            function_pointer = self._anonymous_function_pointer(context, clang_type, owner)
            return TypeRef(function_pointer.name, TypeRefKind.FUNCTION_POINTER, 0, 0, spelling)
        raise UnsupportedConstructError(f"Unsupported type '{spelling}'", kind.name, location_of(owner))

    def _visit_record_type(self, context: ExploreContext, clang_type: Type, spelling: str,
                           scope: Optional[_RecordScope], field_name: Optional[str]) -> TypeRef:
        declaration = clang_type.get_declaration()
        definition = declaration.get_definition() or declaration
        if is_unnamed(definition):
            name = context.name_for(definition)
            if name is None and scope is not None:
                return self._nested_record_ref(context, definition, clang_type, spelling, scope, field_name)
            if name is None:
                kind = "union" if definition.kind == CursorKind.UNION_DECL else "struct"
                name = self._file_level_anonymous_name(context, definition, kind)
        else:
            name = definition.spelling

        stub = self._stub_ref(context, definition, name, DeclarationKind.RECORD, clang_type, spelling)
        if stub is not None:
            return stub
        if name in self.options.opaque_types or declaration.get_definition() is None:
            return self._opaque_ref(context, definition, name, clang_type, spelling)
        size, alignment = self.resolver.layout(clang_type)
        context.enqueue(DeclarationKind.RECORD, name, definition)
        return TypeRef(name, TypeRefKind.RECORD, size, alignment, spelling)

    def _visit_enum_type(self, context: ExploreContext, clang_type: Type, spelling: str,
                         scope: Optional[_RecordScope], field_name: Optional[str]) -> TypeRef:
        declaration = clang_type.get_declaration()
        definition = declaration.get_definition() or declaration
        if is_unnamed(definition):
            name = context.name_for(definition)
            if name is None and scope is not None:
                key = cursor_identity(definition)
                if field_name:
                    name = f"{scope.name}_{field_name}_Enum"
                else:
                    name = scope.next_anonymous_name("enum")
                context.generated_names[key] = name
            elif name is None:
                name = self._file_level_anonymous_name(context, definition, "enum")
        else:
            name = definition.spelling

        stub = self._stub_ref(context, definition, name, DeclarationKind.ENUM, clang_type, spelling)
        if stub is not None:
            return stub
        if name in self.options.opaque_types:
            return self._opaque_ref(context, definition, name, clang_type, spelling)
        size, alignment = self.resolver.layout(clang_type)
        context.enqueue(DeclarationKind.ENUM, name, definition)
        return TypeRef(name, TypeRefKind.ENUM, size, alignment, spelling)

    def _visit_typedef_type(self, context: ExploreContext, clang_type: Type, spelling: str,
                            owner: Cursor) -> TypeRef:
        declaration = clang_type.get_declaration()
        name = declaration.spelling

        # 'typedef struct {...} A;' and 'typedef struct A A;' name the record itself.
        underlying = self.resolver.unwrap(declaration.underlying_typedef_type)
        if underlying.kind in (TypeKind.RECORD, TypeKind.ENUM):
            target = underlying.get_declaration()
            target = target.get_definition() or target
            target_name = context.name_for(target) if is_unnamed(target) else target.spelling
            if target_name == name:
                return self.visit_type(context, underlying, owner)

        stub = self._stub_ref(context, declaration, name, DeclarationKind.TYPEDEF, clang_type, spelling)
        if stub is not None:
            return stub
        if name in self.options.opaque_types:
            return self._opaque_ref(context, declaration, name, clang_type, spelling)
        classification = self.resolver.classify_typedef(declaration)
        size, alignment = self.resolver.layout(clang_type, required=False)
        context.enqueue(DeclarationKind.TYPEDEF, name, declaration)
        return TypeRef(name, _TYPEDEF_REF_KINDS[classification], size, alignment, spelling)

    # --- Opaque types and stubs ---

    def _opaque_ref(self, context: ExploreContext, cursor: Cursor, name: str, clang_type: Type,
                    spelling: str) -> TypeRef:
        size, alignment = self.resolver.layout(clang_type, required=False)
        if not context.has(DeclarationKind.OPAQUE_TYPE, name):
            logger.debug("Found Opaque Type: %s", name)
            context.emit(OpaqueType(name, context.location(cursor), self.target.triple, size, alignment), cursor)
        return TypeRef(name, TypeRefKind.OPAQUE_TYPE, size, alignment, spelling)

    def _stub_ref(self, context: ExploreContext, cursor: Cursor, name: str, kind: DeclarationKind,
                  clang_type: Type, spelling: str) -> Optional[TypeRef]:
        """
        Returns a reference-only stub for declarations that are not explored.

        Declarations from blocked headers are always stubbed. Declarations
        from outside the input's directory are stubbed unless system
        declarations are included or the name is passed through.
        """
        path = cursor.location.file.name if cursor.location.file else None
        blocked = context.is_blocked_file(path)
        external = (not self.options.include_system_declarations
                    and name not in self.options.pass_through_types
                    and context.is_external_file(path))
        if not blocked and not external:
            return None

        size, alignment = self.resolver.layout(clang_type, required=False)
        if not context.has(DeclarationKind.OPAQUE_TYPE, name):
            if blocked and name not in self.options.pass_through_types:
                logger.warning("'%s' from blocked header %s is still referenced; emitting a reference-only stub",
                               name, path)
            else:
                logger.debug("Referencing external %s '%s' from %s", kind.value, name, path or "<builtin>")
            context.emit(OpaqueType(
                name, context.location(cursor), self.target.triple, size, alignment,
                is_reference_only=True, referenced_kind=kind,
            ), cursor)
        return TypeRef(name, TypeRefKind.OPAQUE_TYPE, size, alignment, spelling)

    # --- Function pointers ---

    def _function_type_behind(self, pointer_type: Type) -> Type:
        pointee = self.resolver.unwrap(self.resolver.unwrap(pointer_type).get_pointee())
        while pointee.kind == TypeKind.TYPEDEF:
            pointee = self.resolver.unwrap(pointee.get_declaration().underlying_typedef_type)
        return pointee

    def _anonymous_function_pointer(self, context: ExploreContext, function_type: Type,
                                    owner: Cursor) -> FunctionPointer:
        function_pointer = self._function_pointer(context, function_type, owner, None, False)
        return context.emit(function_pointer)

    def _function_pointer(self, context: ExploreContext, function_type: Type, owner: Cursor,
                          name: Optional[str], is_named: bool,
                          parameter_names: Sequence[str] = ()) -> FunctionPointer:
        return_type = self.visit_type(context, function_type.get_result(), owner)
        parameters = []
        is_variadic = False
        if function_type.kind == TypeKind.FUNCTIONPROTO:
            for i, argument in enumerate(function_type.argument_types()):
                parameter_name = parameter_names[i] if i < len(parameter_names) else ""
                parameters.append(Parameter(parameter_name or f"arg{i}", self.visit_type(context, argument, owner)))
            is_variadic = function_type.is_function_variadic()
        calling_convention = self.resolver.calling_convention(function_type)
        if name is None:
            name = self.resolver.signature_name(return_type, parameters, is_variadic, calling_convention)
        return FunctionPointer(
            name, context.location(owner) if is_named else NO_LOCATION, self.target.triple,
            return_type=return_type,
            parameters=tuple(parameters),
            calling_convention=calling_convention,
            is_variadic=is_variadic,
            is_named=is_named,
            size=self.target.pointer_size,
        )

    # --- Naming ---

    def _file_level_anonymous_name(self, context: ExploreContext, cursor: Cursor, kind: str) -> str:
        path = cursor.location.file.name if cursor.location.file else context.header_path
        prefix = f"{_file_stem(path)}_anonymous_{kind}_"
        return context.generate_name(cursor, prefix, lambda ordinal: prefix + words(ordinal))

    # --- Output ---

    def _build_ir(self, context: ExploreContext) -> HeaderIR:
        if self.options.full_location_paths:
            file_name = context.header_path.replace(os.sep, "/")
        else:
            file_name = os.path.basename(context.header_path)
        arrays = {attribute: context.sorted_declarations(kind) for kind, attribute in IR_ARRAYS.items()}
        ir = HeaderIR(file_name, self.target.triple, self.target.pointer_size, **arrays)
        logger.info(
            "Explored %s for %s: %d functions, %d records, %d enums, %d typedefs, %d opaque types",
            file_name, self.target, len(ir.functions), len(ir.records), len(ir.enums),
            len(ir.typedefs), len(ir.opaque_types),
        )
        return ir
