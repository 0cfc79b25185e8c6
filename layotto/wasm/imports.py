"""Host functions that wasm plugins can call."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional

logger = logging.getLogger(__name__)

ABI_V2 = "proxy_abi_version_0_2_0"


class WasmResult(IntEnum):
    """Result codes of host calls."""

    OK = 0
    NOT_FOUND = 1
    BAD_ARGUMENT = 2
    SERIALIZATION_FAILURE = 3
    PARSE_FAILURE = 4
    BAD_EXPRESSION = 5
    INVALID_MEMORY_ACCESS = 6
    EMPTY = 7
    CAS_MISMATCH = 8
    RESULT_MISMATCH = 9
    INTERNAL_FAILURE = 10
    BROKEN_CONNECTION = 11
    UNIMPLEMENTED = 12


class LogLevel(IntEnum):
    """Log levels a plugin may log at."""

    TRACE = 0
    DEBUG = 1
    INFO = 2
    WARN = 3
    ERROR = 4
    CRITICAL = 5


_LOGGING_LEVELS = {
    LogLevel.TRACE: logging.DEBUG,
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}


@dataclass
class _SayHelloRequest:
    service_name: str = ""
    name: str = ""


class _DecodeError(ValueError):
    pass


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    value = 0
    for shift in range(0, 70, 7):
        if pos >= len(data):
            raise _DecodeError("truncated varint")
        byte = data[pos]
        pos += 1
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, pos
    raise _DecodeError("varint too long")


def _decode_hello_request(data: bytes) -> _SayHelloRequest:
    """Decode the protobuf wire form of a hello request."""
    request = _SayHelloRequest()
    pos = 0
    while pos < len(data):
        tag, pos = _read_varint(data, pos)
        number, wire_type = tag >> 3, tag & 0x7
        if number == 0:
            raise _DecodeError("invalid field number")
        if wire_type == 0:
            _, pos = _read_varint(data, pos)
        elif wire_type == 1:
            pos += 8
        elif wire_type == 5:
            pos += 4
        elif wire_type == 2:
            length, pos = _read_varint(data, pos)
            end = pos + length
            if end > len(data):
                raise _DecodeError("truncated field")
            chunk = data[pos:end]
            pos = end
            if number in (1, 2):
                try:
                    text = chunk.decode("utf-8")
                except UnicodeDecodeError as exc:
                    raise _DecodeError("invalid utf-8 in string field") from exc
                if number == 1:
                    request.service_name = text
                else:
                    request.name = text
        else:
            raise _DecodeError(f"unsupported wire type {wire_type}")
        if pos > len(data):
            raise _DecodeError("truncated field")
    return request


def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _encode_hello_response(hello: Any) -> bytes:
    if not isinstance(hello, str):
        raise TypeError("hello must be a string")
    if not hello:
        return b""
    payload = hello.encode("utf-8")
    return b"\x0a" + _encode_varint(len(payload)) + payload


def _decode_json_request(data: bytes) -> _SayHelloRequest:
    obj = json.loads(data)
    if not isinstance(obj, dict):
        raise ValueError("hello request must be an object")
    fields = {}
    for key in ("service_name", "name"):
        value = obj.get(key)
        if value is not None and not isinstance(value, str):
            raise ValueError(f"{key} must be a string")
        fields[key] = value or ""
    return _SayHelloRequest(**fields)


class LayottoHandler:
    """Answers the host calls a plugin makes.

    ``api`` is the runtime API; it must offer ``say_hello(request)``
    returning an object with a ``hello`` attribute.
    """

    def __init__(self, api: Optional[Any] = None) -> None:
        self.api = api

    def log(self, level: int, msg: str) -> WasmResult:
        """Write a plugin's log message to the host log."""
        logger.log(_LOGGING_LEVELS.get(level, logging.INFO), "%s", msg)
        return WasmResult.OK

    def call_foreign_function(self, func_name: str, param: bytes | str) -> tuple[bytes, WasmResult]:
        """Run the named host function; unknown names return an empty OK result."""
        if func_name != "SayHello":
            return b"", WasmResult.OK

        data = param.encode("utf-8") if isinstance(param, str) else bytes(param)
        is_json = False
        try:
            request = _decode_hello_request(data)
        except _DecodeError:
            try:
                request = _decode_json_request(data)
            except ValueError:
                return b"", WasmResult.BAD_ARGUMENT
            is_json = True

        if self.api is None:
            return b"", WasmResult.INTERNAL_FAILURE
        try:
            response = self.api.say_hello(request)
        except Exception:
            logger.exception("[wasm] SayHello failed")
            return b"", WasmResult.INTERNAL_FAILURE

        hello = getattr(response, "hello", None)
        if is_json:
            if not isinstance(hello, str):
                return b"", WasmResult.SERIALIZATION_FAILURE
            return hello.encode("utf-8"), WasmResult.OK
        try:
            return _encode_hello_response(hello), WasmResult.OK
        except TypeError:
            return b"", WasmResult.SERIALIZATION_FAILURE