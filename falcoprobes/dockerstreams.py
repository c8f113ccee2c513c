"""Parsing of Docker output streams and tar archives exchanged with Docker."""

from __future__ import annotations

import codecs
import io
import json
import re
import tarfile
from collections.abc import Callable, Iterable
from typing import Any

from falcoprobes.logsetup import get_logger

log = get_logger("docker")

_WHITESPACE = re.compile(r"[ \t\n\r]*")


def container_output(chunks: Iterable[bytes], on_line: Callable[[str], None] | None = None) -> str:
    """Join container log chunks into text, one newline-terminated line at a time.

    A trailing carriage return is dropped from each line, and lines that still
    contain a carriage return (progress updates) are skipped. Each kept line is
    also passed to ``on_line`` if given.
    """
    lines: list[str] = []

    def emit(raw: bytes) -> None:
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        if b"\r" in raw:
            return
        line = raw.decode("utf-8", errors="replace") + "\n"
        if on_line is not None:
            on_line(line)
        lines.append(line)

    pending = b""
    for chunk in chunks:
        pending += chunk
        *complete, pending = pending.split(b"\n")
        for raw in complete:
            emit(raw)
    if pending:
        emit(pending)
    return "".join(lines)


def parse_build_or_pull_output(
    chunks: Iterable[bytes], on_message: Callable[[str], None] | None = None
) -> list[dict[str, Any]]:
    """Decode the JSON message stream of a build or pull and return the messages.

    The ``stream`` text of every message is passed to ``on_message`` if given.
    Undecodable output is logged and skipped.
    """
    text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    json_decoder = json.JSONDecoder()
    messages: list[dict[str, Any]] = []

    def drain(text: str) -> str:
        pos = 0
        while True:
            pos = _WHITESPACE.match(text, pos).end()
            if pos >= len(text):
                return ""
            try:
                value, pos = json_decoder.raw_decode(text, pos)
            except json.JSONDecodeError:
                return text[pos:]
            message = value if isinstance(value, dict) else {}
            messages.append(message)
            if on_message is not None:
                on_message(str(message.get("stream") or ""))

    pending = ""
    for chunk in chunks:
        pending = drain(pending + text_decoder.decode(chunk))
    pending = drain(pending + text_decoder.decode(b"", final=True))
    if pending.strip():
        log.warning("could not unmarshal build output: %r", pending[:200])
    return messages


def single_file_archive(name: str, contents: str | bytes) -> bytes:
    """Return a tar archive holding one regular file, mode 0777."""
    data = contents.encode("utf-8") if isinstance(contents, str) else contents
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        info = tarfile.TarInfo(name)
        info.mode = 0o777
        info.size = len(data)
        info.type = tarfile.REGTYPE
        tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def dockerfile_only_context(dockerfile: str) -> bytes:
    """Return a build context holding only the given ``Dockerfile``."""
    return single_file_archive("Dockerfile", dockerfile)


def extract_single_file(archive: bytes) -> bytes:
    """Return the contents of the only entry in a tar archive.

    Raises ValueError if the archive holds no entries or more than one.
    """
    names: list[str] = []
    contents = bytearray()
    with tarfile.open(fileobj=io.BytesIO(archive), mode="r:") as tar:
        for member in tar:
            names.append(member.name)
            extracted = tar.extractfile(member)
            if extracted is not None:
                contents += extracted.read()
    if len(names) != 1:
        raise ValueError(f"found more than 1 or no files ({len(names)})")
    return bytes(contents)