import os
from types import SimpleNamespace

import pytest
from clang.cindex import CursorKind, TypeKind

from clang_args import build_clang_args
from clang_parser import parse_header
from explore_errors import UnresolvableTypeError
from out_types import CallingConvention, DeclarationKind, Parameter, TypeRef, TypeRefKind
from target_platform import TargetPlatform
from type_resolver import TypeResolver

LINUX_X64 = TargetPlatform.parse("x86_64-unknown-linux-gnu")
INT = TypeRef("int", TypeRefKind.PRIMITIVE, 4, 4)
CHAR_POINTER = TypeRef("char*", TypeRefKind.POINTER, 8, 8)


def test_signature_names():
    resolver = TypeResolver(LINUX_X64)
    assert resolver.signature_name(INT, [Parameter("a", CHAR_POINTER), Parameter("b", INT)], False) \
        == "int (*)(char*, int)"
    assert resolver.signature_name(INT, [Parameter("format", CHAR_POINTER)], True) == "int (*)(char*, ...)"
    assert resolver.signature_name(INT, [], False) == "int (*)(void)"
    assert resolver.signature_name(INT, [Parameter("a", INT)], False, CallingConvention.STDCALL) \
        == "int (__stdcall *)(int)"
    assert resolver.signature_name(INT, [], False, CallingConvention.CDECL) == "int (*)(void)"


def test_variable_length_arrays_are_unresolvable():
    vla = SimpleNamespace(kind=TypeKind.VARIABLEARRAY, spelling="int [n]")
    with pytest.raises(UnresolvableTypeError):
        TypeResolver(LINUX_X64).array_ref(vla, INT)


def test_unknown_layout():
    incomplete = SimpleNamespace(get_size=lambda: -2, get_align=lambda: -2, spelling="struct Incomplete")
    resolver = TypeResolver(LINUX_X64)
    with pytest.raises(UnresolvableTypeError):
        resolver.layout(incomplete)
    assert resolver.layout(incomplete, required=False) == (0, 0)


def _typedef(translation_unit, name):
    for cursor in translation_unit.cursor.get_children():
        if cursor.kind == CursorKind.TYPEDEF_DECL and cursor.spelling == name:
            return cursor
    raise AssertionError(f"typedef {name} not found")


@pytest.mark.parametrize("header, name, expected", [
    ("typedef_void_pointer.h", "Handle", DeclarationKind.OPAQUE_TYPE),
    ("typedef_empty_struct_pointer.h", "ImplRef", DeclarationKind.OPAQUE_TYPE),
    ("typedef_function_pointer.h", "Callback", DeclarationKind.FUNCTION_POINTER),
    ("typedef_plain.h", "Score", DeclarationKind.TYPEDEF),
    ("typedef_plain.h", "PointRef", DeclarationKind.TYPEDEF),
])
def test_typedef_classification(libclang, headers_dir, header, name, expected):
    with parse_header(os.path.join(headers_dir, header), build_clang_args(LINUX_X64)) as parsed:
        cursor = _typedef(parsed.translation_unit, name)
        assert TypeResolver(LINUX_X64).classify_typedef(cursor) == expected


def test_primitives_take_clang_sizes_for_the_target(libclang, headers_dir):
    windows = TargetPlatform.parse("x86_64-pc-windows-msvc")
    for target, expected in ((LINUX_X64, 8), (windows, 4)):
        with parse_header(os.path.join(headers_dir, "layout.h"), build_clang_args(target)) as parsed:
            function = next(c for c in parsed.translation_unit.cursor.get_children()
                            if c.spelling == "long_value")
            ref = TypeResolver(target).primitive_ref(function.result_type)
            assert ref.name == "long"
            assert ref.size == expected
