"""Stream-part framing and the normalizer that strips it.

Providers stream their output as newline-terminated *stream parts*.  Two line
framings are understood:

* the data-stream protocol, ``<code>:<json>``, e.g. ``0:"Hel"`` is a text
  part whose value is ``"Hel"``;
* a bare JSON object carrying a ``value`` key, e.g. ``{"value":"Hel"}``,
  which is a text part unless its ``type`` field names another kind.

:func:`normalize` turns a byte stream of framed parts into a byte stream of
plain text, one output fragment per input chunk, preserving order.  A line
that cannot be parsed is an error, never silently skipped.
"""

import json
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from typing import Any

from chatrelay.errors import MalformedStreamPartError, ProviderError
from chatrelay.providers.models import CompletionChunk

# Data-stream protocol type codes.
_CODE_TO_KIND: dict[str, str] = {
    "0": "text",
    "2": "data",
    "3": "error",
    "8": "message_annotations",
    "9": "tool_call",
    "a": "tool_result",
    "d": "finish_message",
    "e": "finish_step",
    "f": "start_step",
    "g": "reasoning",
}
_KIND_TO_CODE: dict[str, str] = {kind: code for code, kind in _CODE_TO_KIND.items()}


@dataclass(frozen=True)
class StreamPart:
    """One parsed stream part.

    Attributes:
        kind: Part type, e.g. ``"text"``, ``"error"``, ``"finish_message"``.
        value: Decoded JSON payload.
    """

    kind: str
    value: Any

    @property
    def text(self) -> str:
        """Textual payload of the part; empty for non-text parts.

        Raises:
            ProviderError: For ``error`` parts, carrying the provider message.
        """
        if self.kind == "error":
            raise ProviderError(f"Provider stream error: {self.value}")
        if self.kind == "text":
            return self.value
        return ""


def parse_stream_part(line: str) -> StreamPart:
    """Parse a single non-empty line into a :class:`StreamPart`.

    Raises:
        MalformedStreamPartError: The line matches neither framing, carries
            invalid JSON, uses an unknown type code, or is a text part whose
            value is not a string.
    """
    if line.startswith("{"):
        part = _parse_json_object_line(line)
    else:
        code, sep, payload = line.partition(":")
        if not sep:
            raise MalformedStreamPartError("stream part has no type prefix", line=line)
        kind = _CODE_TO_KIND.get(code)
        if kind is None:
            raise MalformedStreamPartError(f"unknown stream part type code '{code}'", line=line)
        try:
            value = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise MalformedStreamPartError(
                f"stream part payload is not valid JSON: {exc.msg}", line=line
            ) from exc
        part = StreamPart(kind=kind, value=value)

    if part.kind == "text" and not isinstance(part.value, str):
        raise MalformedStreamPartError("text stream part value must be a string", line=line)
    return part


def _parse_json_object_line(line: str) -> StreamPart:
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as exc:
        raise MalformedStreamPartError(
            f"stream part is not valid JSON: {exc.msg}", line=line
        ) from exc
    if not isinstance(obj, dict) or "value" not in obj:
        raise MalformedStreamPartError("stream part object has no 'value' field", line=line)
    kind = obj.get("type", "text")
    if kind not in _KIND_TO_CODE:
        raise MalformedStreamPartError(f"unknown stream part type '{kind}'", line=line)
    return StreamPart(kind=kind, value=obj["value"])


def format_stream_part(kind: str, value: Any) -> str:
    """Frame *value* as a data-stream protocol line, including the trailing newline."""
    code = _KIND_TO_CODE.get(kind)
    if code is None:
        raise ValueError(f"unknown stream part type '{kind}'")
    return f"{code}:{json.dumps(value)}\n"


def normalize_chunk(chunk: bytes) -> bytes:
    """Strip stream-part framing from one chunk, returning the concatenated text.

    Raises:
        MalformedStreamPartError: The chunk is not valid UTF-8 or holds an
            unparsable line.
    """
    try:
        text = chunk.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedStreamPartError(
            f"stream chunk is not valid UTF-8: {exc.reason}", line=repr(chunk)
        ) from exc
    values = [parse_stream_part(line).text for line in text.split("\n") if line != ""]
    return "".join(values).encode("utf-8")


async def normalize(chunks: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """Transform a stream of framed chunks into a stream of plain-text fragments.

    Single pass, no buffering across chunk boundaries: each input chunk
    yields exactly one output fragment (possibly empty).  The output ends
    when the input ends.
    """
    async for chunk in chunks:
        yield normalize_chunk(chunk)


async def to_data_stream(chunks: AsyncIterable[CompletionChunk]) -> AsyncIterator[bytes]:
    """Frame provider completion chunks as data-stream protocol bytes.

    Each chunk with content becomes one text part.  A chunk reporting a
    finish reason additionally emits a ``finish_message`` part carrying the
    reason and token usage.
    """
    async for chunk in chunks:
        framed = ""
        if chunk.content:
            framed += format_stream_part("text", chunk.content)
        if chunk.finish_reason:
            usage = chunk.usage or {}
            framed += format_stream_part(
                "finish_message",
                {
                    "finishReason": chunk.finish_reason,
                    "usage": {
                        "promptTokens": usage.get("input_tokens", 0),
                        "completionTokens": usage.get("output_tokens", 0),
                    },
                },
            )
        if framed:
            yield framed.encode("utf-8")
