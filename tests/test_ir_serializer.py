import json

from ir_serializer import dumps, ir_to_dict, loads, read_ir, write_ir
from out_types import (CallingConvention, DeclarationKind, Enum, EnumValue, Function, HeaderIR, Location,
                       OpaqueType, Parameter, Record, RecordField, TypeRef, TypeRefKind)

PLATFORM = "x86_64-unknown-linux-gnu"
INT = TypeRef("int", TypeRefKind.PRIMITIVE, 4, 4, "int")
CHAR = TypeRef("char", TypeRefKind.PRIMITIVE, 1, 1, "char")
CHAR_POINTER = TypeRef("char*", TypeRefKind.POINTER, 8, 8, "const char *", inner=CHAR)


def _sample_ir():
    location = Location("api.h", 3, 1)
    return HeaderIR(
        "api.h", PLATFORM, 8,
        functions=(
            Function("open_file", location, PLATFORM, return_type=INT,
                     parameters=(Parameter("path", CHAR_POINTER),)),
            Function("api_log", location, PLATFORM, return_type=INT,
                     parameters=(Parameter("format", CHAR_POINTER),),
                     calling_convention=CallingConvention.STDCALL, is_variadic=True),
        ),
        records=(
            Record("Pair", location, PLATFORM, size=8, alignment=4, fields=(
                RecordField("first", INT, 0, 0),
                RecordField("second", INT, 4, 0),
            )),
        ),
        enums=(Enum("Mode", location, PLATFORM, INT, (EnumValue("MODE_A", -1), EnumValue("MODE_B", 2))),),
        opaque_types=(
            OpaqueType("Vendor", location, PLATFORM, 4, 4, is_reference_only=True,
                       referenced_kind=DeclarationKind.RECORD),
        ),
    )


def test_defaults_and_empty_arrays_are_omitted():
    data = ir_to_dict(_sample_ir())
    assert "typedefs" not in data
    assert "macro_constants" not in data

    open_file = data["functions"][0]
    assert "calling_convention" not in open_file
    assert "is_variadic" not in open_file
    assert open_file["parameters"][0]["type"]["inner"] == {
        "name": "char", "kind": "primitive", "size": 1, "alignment": 1, "spelling": "char"}

    first = data["records"][0]["fields"][0]
    assert first == {"name": "first", "type": data["records"][0]["fields"][1]["type"], "offset": 0, "padding": 0}


def test_required_fields_are_always_written():
    first = ir_to_dict(_sample_ir())["records"][0]["fields"][0]
    assert first["offset"] == 0
    assert first["padding"] == 0


def test_enumerations_are_written_as_tokens():
    data = ir_to_dict(_sample_ir())
    assert data["functions"][1]["calling_convention"] == "stdcall"
    assert data["opaque_types"][0]["referenced_kind"] == "record"
    assert data["functions"][0]["return_type"]["kind"] == "primitive"


def test_document_layout():
    text = dumps(_sample_ir())
    assert text.endswith("}\n")
    assert text.startswith('{\n  "file_name": "api.h",\n  "platform": ')
    assert list(json.loads(text)) == ["file_name", "platform", "pointer_size", "functions", "records", "enums",
                                      "opaque_types"]


def test_read_back(tmp_path):
    ir = _sample_ir()
    path = write_ir(ir, tmp_path / "out" / f"{PLATFORM}.json")
    assert path.exists()
    assert read_ir(path) == ir
    assert loads(dumps(ir)).enums[0].values[0].value == -1
