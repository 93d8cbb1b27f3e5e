import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from clang.cindex import Cursor, Type, TypeKind, conf

from explore_errors import UnresolvableTypeError, UnsupportedConstructError
from out_types import CallingConvention, DeclarationKind, Parameter, TypeRef, TypeRefKind
from target_platform import TargetPlatform, WELL_KNOWN_TYPEDEFS

logger = logging.getLogger(__name__)

BUILTIN_NAMES: Dict[TypeKind, str] = {
    TypeKind.VOID: "void",
    TypeKind.BOOL: "_Bool",
    TypeKind.CHAR_U: "char",
    TypeKind.UCHAR: "unsigned char",
    TypeKind.CHAR16: "char16_t",
    TypeKind.CHAR32: "char32_t",
    TypeKind.USHORT: "unsigned short",
    TypeKind.UINT: "unsigned int",
    TypeKind.ULONG: "unsigned long",
    TypeKind.ULONGLONG: "unsigned long long",
    TypeKind.UINT128: "unsigned __int128",
    TypeKind.CHAR_S: "char",
    TypeKind.SCHAR: "signed char",
    TypeKind.WCHAR: "wchar_t",
    TypeKind.SHORT: "short",
    TypeKind.INT: "int",
    TypeKind.LONG: "long",
    TypeKind.LONGLONG: "long long",
    TypeKind.INT128: "__int128",
    TypeKind.HALF: "__fp16",
    TypeKind.FLOAT: "float",
    TypeKind.DOUBLE: "double",
    TypeKind.LONGDOUBLE: "long double",
    TypeKind.FLOAT128: "__float128",
}

FUNCTION_KINDS = (TypeKind.FUNCTIONPROTO, TypeKind.FUNCTIONNOPROTO)

_SUGAR_KINDS = (TypeKind.UNEXPOSED,)

# CXCallingConv values from clang-c/Index.h
_CALLING_CONVENTIONS = {
    1: CallingConvention.CDECL,
    2: CallingConvention.STDCALL,
    3: CallingConvention.FASTCALL,
}

_CONVENTION_DECLARATORS = {
    CallingConvention.STDCALL: "__stdcall *",
    CallingConvention.FASTCALL: "__fastcall *",
}


@dataclass(frozen=True)
class FieldLayout:
    offset: int
    padding: int
    bit_width: Optional[int] = None
    bit_offset: Optional[int] = None


def is_unnamed(cursor: Cursor) -> bool:
    """True for records and enums that have no tag name of their own."""
    spelling = cursor.spelling
    if not spelling or "(unnamed" in spelling or "(anonymous" in spelling:
        return True
    return cursor.is_anonymous()


def location_of(cursor: Cursor) -> str:
    location = cursor.location
    file_name = location.file.name if location.file else "<builtin>"
    return f"{file_name}:{location.line}:{location.column}"


class TypeResolver:
    """
    Turns clang types into TypeRefs for one target platform.

    Sizes, alignments and offsets always come from clang's layout for the
    target; the per-target primitive table only names things and fills in
    sizes clang reports as unknown (void).
    """

    def __init__(self, target: TargetPlatform):
        self.target = target

    def unwrap(self, clang_type: Type) -> Type:
        """Strips elaborated, attributed and unexposed sugar from a type."""
        while True:
            kind = clang_type.kind
            if kind == TypeKind.ELABORATED:
                clang_type = clang_type.get_named_type()
            elif kind in _SUGAR_KINDS:
                canonical = clang_type.get_canonical()
                if canonical.kind == kind:
                    raise UnsupportedConstructError(
                        f"Type '{clang_type.spelling}' has no canonical form", kind.name)
                clang_type = canonical
            else:
                return clang_type

    def is_builtin(self, clang_type: Type) -> bool:
        return clang_type.kind in BUILTIN_NAMES

    def is_well_known(self, clang_type: Type) -> bool:
        return (clang_type.kind == TypeKind.TYPEDEF
                and clang_type.get_declaration().spelling in WELL_KNOWN_TYPEDEFS)

    def layout(self, clang_type: Type, required: bool = True) -> Tuple[int, int]:
        """Size and alignment in bytes as clang lays the type out for the target."""
        size = clang_type.get_size()
        alignment = clang_type.get_align()
        if size < 0 or alignment < 0:
            if required:
                raise UnresolvableTypeError("Cannot compute the size of type", clang_type.spelling)
            return 0, 0
        return size, alignment

    def primitive_ref(self, clang_type: Type, spelling: str = "") -> TypeRef:
        name = BUILTIN_NAMES[clang_type.kind]
        if clang_type.kind == TypeKind.VOID:
            return TypeRef(name, TypeRefKind.PRIMITIVE, 0, 0, spelling or name)
        size, alignment = self.layout(clang_type, required=False)
        if size == 0:
            size = self.target.primitive_size(name) or 0
            alignment = size
        if size == 0:
            raise UnresolvableTypeError("Cannot compute the size of primitive", name)
        return TypeRef(name, TypeRefKind.PRIMITIVE, size, alignment, spelling or name)

    def well_known_ref(self, clang_type: Type, spelling: str = "") -> TypeRef:
        name = clang_type.get_declaration().spelling
        size, alignment = self.layout(clang_type, required=False)
        expected = self.target.primitive_size(name)
        if size == 0:
            size = alignment = expected or 0
        elif expected is not None and expected != size:
            logger.warning("'%s' is %d bytes on %s, expected %d", name, size, self.target, expected)
        return TypeRef(name, TypeRefKind.PRIMITIVE, size, alignment, spelling or name)

    def pointer_ref(self, clang_type: Type, inner: TypeRef, spelling: str = "") -> TypeRef:
        size, alignment = self.layout(clang_type)
        return TypeRef(f"{inner.name}*", TypeRefKind.POINTER, size, alignment,
                       spelling or clang_type.spelling, inner=inner)

    def array_ref(self, clang_type: Type, inner: TypeRef, spelling: str = "") -> TypeRef:
        spelling = spelling or clang_type.spelling
        if clang_type.kind == TypeKind.CONSTANTARRAY:
            count = clang_type.get_array_size()
            size, alignment = self.layout(clang_type)
            return TypeRef(f"{inner.name}[{count}]", TypeRefKind.ARRAY, size, alignment,
                           spelling, element_count=count, inner=inner)
        if clang_type.kind == TypeKind.INCOMPLETEARRAY:
            # Flexible array member: no storage of its own.
            return TypeRef(f"{inner.name}[]", TypeRefKind.ARRAY, 0, inner.alignment,
                           spelling, element_count=0, inner=inner)
        raise UnresolvableTypeError("Variable length arrays have no fixed size", spelling)

    def is_wrapped_array(self, clang_type: Type) -> bool:
        """Constant arrays whose element type is not a builtin scalar."""
        clang_type = self.unwrap(clang_type)
        if clang_type.kind != TypeKind.CONSTANTARRAY:
            return False
        element = clang_type.get_array_element_type().get_canonical()
        return element.kind not in BUILTIN_NAMES

    def is_zero_field_record(self, record_type: Type) -> bool:
        declaration = record_type.get_declaration()
        definition = declaration.get_definition()
        if definition is None:
            return True
        return not any(True for _ in definition.type.get_fields())

    def classify_typedef(self, cursor: Cursor) -> DeclarationKind:
        """
        Classifies a typedef by its underlying type.

        Checked in order: pointer to void, pointer to a record with no
        visible fields, pointer to a function type; anything else is a plain
        typedef.
        """
        underlying = self.unwrap(cursor.underlying_typedef_type)
        if underlying.kind != TypeKind.POINTER:
            return DeclarationKind.TYPEDEF
        pointee = underlying.get_pointee().get_canonical()
        if pointee.kind == TypeKind.VOID:
            return DeclarationKind.OPAQUE_TYPE
        if pointee.kind == TypeKind.RECORD and self.is_zero_field_record(pointee):
            return DeclarationKind.OPAQUE_TYPE
        if pointee.kind in FUNCTION_KINDS:
            return DeclarationKind.FUNCTION_POINTER
        return DeclarationKind.TYPEDEF

    def field_layout(self, record_name: str, fields: Sequence[Tuple[Cursor, int]],
                     record_size: int, is_union: bool) -> List[FieldLayout]:
        """
        Computes byte offsets and padding from clang's field offsets.

        `fields` pairs each field cursor with the size of its type. Padding is
        the gap to the next field, or to the end of the record for the last
        field and for every union member.
        """
        offsets = []
        for cursor, size in fields:
            bit_offset = cursor.get_field_offsetof()
            if bit_offset < 0:
                raise UnresolvableTypeError("Cannot compute field offset",
                                            f"{record_name}.{cursor.spelling}", location_of(cursor))
            if cursor.is_bitfield() and size > 0:
                # Report the storage unit the bits live in.
                unit = size * 8
                offsets.append((bit_offset // unit) * size)
            else:
                offsets.append(bit_offset // 8)

        layouts = []
        for i, (cursor, size) in enumerate(fields):
            offset = offsets[i]
            if is_union or i == len(fields) - 1:
                end = record_size
            else:
                end = offsets[i + 1]
            padding = end - offset - size
            if cursor.is_bitfield():
                layouts.append(FieldLayout(offset, max(padding, 0),
                                           cursor.get_bitfield_width(), cursor.get_field_offsetof()))
                continue
            if padding < 0:
                next_field = fields[i + 1][0] if i + 1 < len(fields) else None
                if next_field is not None and next_field.is_bitfield():
                    padding = 0
                else:
                    raise UnresolvableTypeError("Overlapping fields in record",
                                                f"{record_name}.{cursor.spelling}", location_of(cursor))
            layouts.append(FieldLayout(offset, padding))
        return layouts

    def calling_convention(self, function_type: Type) -> CallingConvention:
        function_type = self.unwrap(function_type)
        value = conf.lib.clang_getFunctionTypeCallingConv(function_type)
        return _CALLING_CONVENTIONS.get(value, CallingConvention.DEFAULT)

    def enum_integer_ref(self, cursor: Cursor) -> TypeRef:
        integer_type = cursor.enum_type
        canonical = integer_type.get_canonical()
        if canonical.kind not in BUILTIN_NAMES:
            raise UnsupportedConstructError(
                f"Enum '{cursor.spelling}' has a non-integer representation", canonical.kind.name,
                location_of(cursor))
        return self.primitive_ref(canonical, integer_type.spelling)

    def signature_name(self, return_type: TypeRef, parameters: Sequence[Parameter], is_variadic: bool,
                       calling_convention: CallingConvention = CallingConvention.DEFAULT) -> str:
        names = [p.type.name for p in parameters]
        if is_variadic:
            names.append("...")
        pointer = _CONVENTION_DECLARATORS.get(calling_convention, "*")
        return f"{return_type.name} ({pointer})({', '.join(names) or 'void'})"
