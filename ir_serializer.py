import dataclasses
import enum
import json
import typing
from pathlib import Path
from typing import Any, Dict, Union

from out_types import HeaderIR


def _is_default(f: dataclasses.Field, value: Any) -> bool:
    if f.default is not dataclasses.MISSING:
        return value == f.default
    if f.default_factory is not dataclasses.MISSING:  # type: ignore[misc]
        return value == f.default_factory()  # type: ignore[misc]
    return False


def _encode(value: Any) -> Any:
    if dataclasses.is_dataclass(value):
        out = {}
        for f in dataclasses.fields(value):
            item = getattr(value, f.name)
            # Required fields are always written, defaulted ones only when set.
            if _is_default(f, item):
                continue
            out[f.name] = _encode(item)
        return out
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def ir_to_dict(ir: HeaderIR) -> Dict[str, Any]:
    return _encode(ir)


def dumps(ir: HeaderIR) -> str:
    return json.dumps(ir_to_dict(ir), indent=2) + "\n"


def write_ir(ir: HeaderIR, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps(ir), encoding="utf-8")
    return path


def _decode_value(hint: Any, value: Any) -> Any:
    origin = typing.get_origin(hint)
    if origin is Union:
        args = [a for a in typing.get_args(hint) if a is not type(None)]
        return None if value is None else _decode_value(args[0], value)
    if origin is tuple:
        item = typing.get_args(hint)[0]
        return tuple(_decode_value(item, v) for v in value)
    if isinstance(hint, type) and issubclass(hint, enum.Enum):
        return hint(value)
    if dataclasses.is_dataclass(hint):
        return _decode(hint, value)
    return value


def _decode(cls: type, data: Dict[str, Any]) -> Any:
    if not isinstance(data, dict):
        raise ValueError(f"Expected an object for {cls.__name__}, got {type(data).__name__}")
    hints = typing.get_type_hints(cls)
    kwargs = {}
    for f in dataclasses.fields(cls):
        if f.name in data:
            kwargs[f.name] = _decode_value(hints[f.name], data[f.name])
    return cls(**kwargs)


def ir_from_dict(data: Dict[str, Any]) -> HeaderIR:
    return _decode(HeaderIR, data)


def loads(text: str) -> HeaderIR:
    return ir_from_dict(json.loads(text))


def read_ir(path: Union[str, Path]) -> HeaderIR:
    return loads(Path(path).read_text(encoding="utf-8"))
