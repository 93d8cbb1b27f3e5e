import enum
from dataclasses import dataclass
from typing import ClassVar, Optional, Tuple


class DeclarationKind(enum.Enum):
    FUNCTION = "function"
    FUNCTION_POINTER = "function_pointer"
    RECORD = "record"
    ENUM = "enum"
    OPAQUE_TYPE = "opaque_type"
    TYPEDEF = "typedef"
    VARIABLE = "variable"
    MACRO_CONSTANT = "macro_constant"


class TypeRefKind(enum.Enum):
    PRIMITIVE = "primitive"
    POINTER = "pointer"
    ARRAY = "array"
    RECORD = "record"
    ENUM = "enum"
    TYPEDEF = "typedef"
    OPAQUE_TYPE = "opaque_type"
    FUNCTION_POINTER = "function_pointer"


class CallingConvention(enum.Enum):
    DEFAULT = "default"
    CDECL = "cdecl"
    STDCALL = "stdcall"
    FASTCALL = "fastcall"


@dataclass(frozen=True)
class Location:
    file: str
    line: int
    column: int = 0

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


NO_LOCATION = Location("", 0)


@dataclass(frozen=True)
class TypeRef:
    """
    A resolved reference to a type.

    TypeRefs name the declaration they point at instead of holding it, so the
    IR never contains reference cycles.
    """
    name: str
    kind: TypeRefKind
    size: int
    alignment: int = 0
    spelling: str = ""
    element_count: Optional[int] = None
    inner: Optional["TypeRef"] = None


@dataclass(frozen=True)
class Parameter:
    name: str
    type: TypeRef


@dataclass(frozen=True)
class Declaration:
    name: str
    location: Location
    platform: str

    kind: ClassVar[DeclarationKind]


@dataclass(frozen=True)
class Function(Declaration):
    return_type: TypeRef
    parameters: Tuple[Parameter, ...] = ()
    calling_convention: CallingConvention = CallingConvention.DEFAULT
    is_variadic: bool = False

    kind = DeclarationKind.FUNCTION


@dataclass(frozen=True)
class FunctionPointer(Declaration):
    return_type: TypeRef
    parameters: Tuple[Parameter, ...] = ()
    calling_convention: CallingConvention = CallingConvention.DEFAULT
    is_variadic: bool = False
    is_named: bool = False
    size: int = 0

    kind = DeclarationKind.FUNCTION_POINTER


@dataclass(frozen=True)
class RecordField:
    name: str
    type: TypeRef
    offset: int
    padding: int
    is_wrapped: bool = False
    is_anonymous: bool = False
    bit_width: Optional[int] = None
    bit_offset: Optional[int] = None


@dataclass(frozen=True)
class Record(Declaration):
    size: int
    alignment: int
    fields: Tuple[RecordField, ...] = ()
    is_union: bool = False
    nested_records: Tuple["Record", ...] = ()

    kind = DeclarationKind.RECORD


@dataclass(frozen=True)
class EnumValue:
    name: str
    value: int


@dataclass(frozen=True)
class Enum(Declaration):
    integer_type: TypeRef
    values: Tuple[EnumValue, ...] = ()

    kind = DeclarationKind.ENUM


@dataclass(frozen=True)
class OpaqueType(Declaration):
    size: int = 0
    alignment: int = 0
    is_reference_only: bool = False
    referenced_kind: Optional[DeclarationKind] = None

    kind = DeclarationKind.OPAQUE_TYPE


@dataclass(frozen=True)
class Typedef(Declaration):
    underlying_type: TypeRef

    kind = DeclarationKind.TYPEDEF


@dataclass(frozen=True)
class Variable(Declaration):
    type: TypeRef

    kind = DeclarationKind.VARIABLE


@dataclass(frozen=True)
class MacroConstant(Declaration):
    type_name: str
    value: str

    kind = DeclarationKind.MACRO_CONSTANT


@dataclass(frozen=True)
class HeaderIR:
    file_name: str
    platform: str
    pointer_size: int
    functions: Tuple[Function, ...] = ()
    function_pointers: Tuple[FunctionPointer, ...] = ()
    records: Tuple[Record, ...] = ()
    enums: Tuple[Enum, ...] = ()
    opaque_types: Tuple[OpaqueType, ...] = ()
    typedefs: Tuple[Typedef, ...] = ()
    variables: Tuple[Variable, ...] = ()
    macro_constants: Tuple[MacroConstant, ...] = ()

    def declarations(self):
        for group in (self.functions, self.function_pointers, self.records, self.enums,
                      self.opaque_types, self.typedefs, self.variables, self.macro_constants):
            yield from group

    def find(self, name: str) -> Optional[Declaration]:
        for declaration in self.declarations():
            if declaration.name == name:
                return declaration
        return None


# Top-level IR arrays by declaration kind, in serialized order.
IR_ARRAYS = {
    DeclarationKind.FUNCTION: "functions",
    DeclarationKind.FUNCTION_POINTER: "function_pointers",
    DeclarationKind.RECORD: "records",
    DeclarationKind.ENUM: "enums",
    DeclarationKind.OPAQUE_TYPE: "opaque_types",
    DeclarationKind.TYPEDEF: "typedefs",
    DeclarationKind.VARIABLE: "variables",
    DeclarationKind.MACRO_CONSTANT: "macro_constants",
}
