# crunchyapi/schema.py
"""Lenient/strict decoding of JSON payloads into dataclass records.

Records are plain dataclasses. The voluptuous schema for a record is derived
once per (record, mode) from its field definitions:

- **Lenient** (default): every field is optional. Absent or ``null`` fields
  take the declared default or the type default (``""``, ``0``, ``False``,
  ``[]``, ``{}``, ``None`` for optionals, a nested record decoded from ``{}``).
  Scalars of the wrong JSON type are coerced (``"3600"`` becomes ``3600``) or,
  when that fails, replaced by the default. Unknown keys are dropped.
- **Strict**: fields without an explicit default are required, scalars must
  carry the exact JSON type and unknown keys are rejected. Keys shaped like
  ``__links__`` are upstream internals and are stripped before validation.
  Strict mode is a contract-drift diagnostic for controlled test runs, not for
  ordinary traffic.

The process-wide mode is read once from ``CRUNCHYAPI_SCHEMA_MODE`` at import
time; a `SchemaValidator` may still be created with an explicit mode.

Wire names that differ from attribute names are declared with field metadata::

    result_type: str = field(default="", metadata={"key": "type"})
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import types
import typing
from collections.abc import Callable, Mapping
from enum import StrEnum
from functools import partial
from typing import Any, TypeVar

import voluptuous as vol

from .const import ENV_SCHEMA_MODE, SCHEMA_MODE_LENIENT, SCHEMA_MODE_STRICT
from .exceptions import DecodeError, MissingFieldError, UnknownFieldError

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_EXTRA_KEYS_MSG = "extra keys not allowed"


class SchemaMode(StrEnum):
    """Decoding strictness."""

    LENIENT = SCHEMA_MODE_LENIENT
    STRICT = SCHEMA_MODE_STRICT


def _mode_from_env() -> SchemaMode:
    raw = (os.environ.get(ENV_SCHEMA_MODE) or "").strip().lower()
    if not raw:
        return SchemaMode.LENIENT
    try:
        return SchemaMode(raw)
    except ValueError:
        _LOGGER.warning(
            "Ignoring unsupported %s=%r; falling back to lenient decoding.",
            ENV_SCHEMA_MODE,
            raw,
        )
        return SchemaMode.LENIENT


# Fixed for the lifetime of the process.
DEFAULT_SCHEMA_MODE: SchemaMode = _mode_from_env()


# --- Field introspection ---


def _wire_key(f: dataclasses.Field[Any]) -> str:
    return str(f.metadata.get("key", f.name))


def _has_explicit_default(f: dataclasses.Field[Any]) -> bool:
    return (
        f.default is not dataclasses.MISSING
        or f.default_factory is not dataclasses.MISSING
    )


def _split_optional(tp: Any) -> tuple[Any, bool]:
    """Return (inner type, is_optional) for ``X | None`` annotations."""
    origin = typing.get_origin(tp)
    if origin in (typing.Union, types.UnionType):
        args = [arg for arg in typing.get_args(tp) if arg is not type(None)]
        if len(args) != len(typing.get_args(tp)):
            return (args[0] if len(args) == 1 else typing.Union[tuple(args)]), True
    return tp, False


def _type_default_factory(tp: Any) -> Callable[[], Any]:
    """Return a zero-value factory for the annotated type."""
    inner, optional = _split_optional(tp)
    if optional:
        return lambda: None
    origin = typing.get_origin(inner) or inner
    if dataclasses.is_dataclass(inner):
        return dict  # decoded into the nested record's defaults
    if origin in (list, tuple, set, frozenset):
        return list
    if origin in (dict, Mapping):
        return dict
    if inner is bool:
        return lambda: False
    if inner is int:
        return lambda: 0
    if inner is float:
        return lambda: 0.0
    if inner is str:
        return lambda: ""
    return lambda: None


def _field_default_factory(f: dataclasses.Field[Any], tp: Any) -> Callable[[], Any]:
    if f.default_factory is not dataclasses.MISSING:
        return f.default_factory
    if f.default is not dataclasses.MISSING:
        value = f.default
        return lambda: value
    return _type_default_factory(tp)


def _strip_internal_keys(value: Any) -> Any:
    """Remove ``__name__`` keys recursively (strict mode only)."""
    if isinstance(value, Mapping):
        return {
            key: _strip_internal_keys(item)
            for key, item in value.items()
            if not (isinstance(key, str) and key.startswith("__") and key.endswith("__"))
        }
    if isinstance(value, list):
        return [_strip_internal_keys(item) for item in value]
    return value


def _instantiate(model: type[Any], names: Mapping[str, str], data: Mapping[str, Any]) -> Any:
    kwargs = {names[key]: value for key, value in data.items() if key in names}
    return model(**kwargs)


def _null_to_default(factory: Callable[[], Any], value: Any) -> Any:
    return factory() if value is None else value


# --- Scalar validators ---

_SCALAR_TYPES: tuple[type, ...] = (str, int, float, bool)
_BOOL_STRINGS = {"true": True, "false": False}


def _expect_type(tp: type, value: Any) -> Any:
    """Strict: accept only the JSON type that maps to `tp` (ints pass as floats)."""
    if isinstance(value, bool) and tp is not bool:
        ok = False
    elif tp is float:
        ok = isinstance(value, (int, float))
    else:
        ok = isinstance(value, tp)
    if not ok:
        raise vol.Invalid(f"expected {tp.__name__}, got {type(value).__name__}")
    return float(value) if tp is float else value


def _coerce(tp: type, value: Any) -> Any:
    if tp is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in _BOOL_STRINGS:
            return _BOOL_STRINGS[value.strip().lower()]
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise vol.Invalid(f"cannot coerce {type(value).__name__} to bool")
    if isinstance(value, (bool, Mapping, list)):
        raise vol.Invalid(f"cannot coerce {type(value).__name__} to {tp.__name__}")
    try:
        return vol.Coerce(tp)(value)
    except vol.Invalid:
        if tp is int and isinstance(value, str):
            # "3600.0"
            return vol.Coerce(int)(vol.Coerce(float)(value))
        raise


def _coerce_or_default(
    key: str, tp: type, factory: Callable[[], Any], value: Any
) -> Any:
    """Lenient: coerce `value` to `tp`, or fall back to the field default."""
    if value is None:
        return factory()
    try:
        return _coerce(tp, value)
    except vol.Invalid:
        _LOGGER.debug(
            "Field '%s': cannot use %s value as %s; using default",
            key,
            type(value).__name__,
            tp.__name__,
        )
        return factory()


# --- Schema construction ---


class SchemaValidator:
    """Decode payloads into dataclass records under a fixed SchemaMode."""

    def __init__(self, mode: SchemaMode | str | None = None) -> None:
        self.mode = SchemaMode(mode) if mode is not None else DEFAULT_SCHEMA_MODE
        self._cache: dict[type[Any], vol.Schema] = {}

    @property
    def strict(self) -> bool:
        return self.mode is SchemaMode.STRICT

    def schema_for(self, model: type[Any]) -> vol.Schema:
        """Return (and cache) the voluptuous schema for `model`."""
        cached = self._cache.get(model)
        if cached is not None:
            return cached
        if not dataclasses.is_dataclass(model):
            raise TypeError(f"{model!r} is not a dataclass record")

        hints = typing.get_type_hints(model)
        mapping: dict[Any, Any] = {}
        names: dict[str, str] = {}
        for f in dataclasses.fields(model):
            if not f.init:
                continue
            tp = hints.get(f.name, Any)
            key = _wire_key(f)
            names[key] = f.name
            factory = _field_default_factory(f, tp)
            value_validator = self._value_validator(tp, key, factory)
            if self.strict:
                if _has_explicit_default(f):
                    marker: vol.Marker = vol.Optional(key, default=factory)
                else:
                    marker = vol.Required(key)
            else:
                marker = vol.Optional(key, default=factory)
                _, optional = _split_optional(tp)
                if not optional:
                    value_validator = vol.All(
                        partial(_null_to_default, factory), value_validator
                    )
            mapping[marker] = value_validator

        extra = vol.PREVENT_EXTRA if self.strict else vol.REMOVE_EXTRA
        schema = vol.Schema(
            vol.All(
                vol.Schema(mapping, extra=extra),
                partial(_instantiate, model, names),
            )
        )
        self._cache[model] = schema
        return schema

    def _value_validator(
        self, tp: Any, key: str, factory: Callable[[], Any]
    ) -> Any:
        inner, optional = _split_optional(tp)
        origin = typing.get_origin(inner) or inner
        validator: Any
        if dataclasses.is_dataclass(inner):
            validator = self.schema_for(inner)
        elif origin is list:
            args = typing.get_args(inner)
            item_inner, _ = _split_optional(args[0]) if args else (Any, False)
            if dataclasses.is_dataclass(item_inner):
                validator = [self.schema_for(item_inner)]
            else:
                validator = list
        elif origin in (dict, Mapping):
            validator = dict
        elif inner in _SCALAR_TYPES:
            if self.strict:
                validator = partial(_expect_type, inner)
            else:
                validator = partial(_coerce_or_default, key, inner, factory)
        else:
            return object
        if optional:
            return vol.Any(None, validator)
        return validator

    # --- Decoding ---

    def decode(self, model: type[T], payload: bytes | str | Mapping[str, Any]) -> T:
        """Decode `payload` into an instance of `model`.

        Raises:
            DecodeError: invalid JSON, a non-object top level, a container of the
                wrong type, or (strict mode) a scalar of the wrong type.
            MissingFieldError: strict mode, a field without default is absent.
            UnknownFieldError: strict mode, an undeclared field is present.
        """
        data = self._load(payload)
        if not isinstance(data, Mapping):
            raise DecodeError(
                f"Expected a JSON object for {model.__name__}",
                detail=type(data).__name__,
            )
        if self.strict:
            data = _strip_internal_keys(data)
        schema = self.schema_for(model)
        try:
            return typing.cast(T, schema(dict(data)))
        except vol.MultipleInvalid as err:
            raise self._translate(model, err) from err

    def decode_list(
        self, model: type[T], payload: bytes | str | list[Any]
    ) -> list[T]:
        """Decode a top-level JSON array of records."""
        data = self._load(payload)
        if not isinstance(data, list):
            raise DecodeError(
                f"Expected a JSON array of {model.__name__}",
                detail=type(data).__name__,
            )
        return [self.decode(model, item) for item in data]

    @staticmethod
    def _load(payload: Any) -> Any:
        if isinstance(payload, (bytes, bytearray, str)):
            raw = payload.decode("utf-8", errors="replace") if isinstance(
                payload, (bytes, bytearray)
            ) else payload
            if not raw.strip():
                return {}
            try:
                return json.loads(raw)
            except json.JSONDecodeError as err:
                raise DecodeError(
                    "Response body is not valid JSON",
                    detail=f"{err.msg} at {err.lineno}:{err.colno}",
                ) from err
        return payload

    @staticmethod
    def _translate(model: type[Any], err: vol.MultipleInvalid) -> DecodeError:
        for error in err.errors:
            path = ".".join(str(part) for part in error.path)
            if isinstance(error, vol.RequiredFieldInvalid):
                return MissingFieldError(path, model=model.__name__)
            if error.error_message == _EXTRA_KEYS_MSG:
                return UnknownFieldError(path, model=model.__name__)
        first = err.errors[0] if err.errors else err
        path = ".".join(str(part) for part in first.path)
        where = f" field '{path}'" if path else ""
        return DecodeError(f"Cannot decode {model.__name__}{where}", detail=first.msg)


_default_validator: SchemaValidator | None = None


def get_validator() -> SchemaValidator:
    """Return the shared validator bound to the process-wide mode."""
    global _default_validator
    if _default_validator is None:
        _default_validator = SchemaValidator()
    return _default_validator


def decode(model: type[T], payload: bytes | str | Mapping[str, Any]) -> T:
    """Decode with the shared process-wide validator."""
    return get_validator().decode(model, payload)


__all__ = [
    "DEFAULT_SCHEMA_MODE",
    "SchemaMode",
    "SchemaValidator",
    "decode",
    "get_validator",
]
