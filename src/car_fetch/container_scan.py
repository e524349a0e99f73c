"""Sparse structural walk of a CARv1 container.

A CARv1 file is a varint-prefixed header followed by varint-prefixed
sections. A zero length prefix is an end-of-stream sentinel; some producers
pad the file after it, which strict readers reject. The scanner locates that
sentinel by seeking past section bodies, so the cost is proportional to the
number of sections and never to the payload size.
"""

from __future__ import annotations

import dataclasses
import io
import logging
from pathlib import Path
from typing import BinaryIO

from car_fetch.exceptions import ContainerError, NoHeader, TruncatedSection

logger = logging.getLogger(__name__)

MAX_VARINT_BYTES = 10  # enough for a uint64


def read_uvarint(stream: BinaryIO) -> int | None:
    """Decode an unsigned LEB128 varint; None if the stream ends first."""
    value = 0
    shift = 0
    for _ in range(MAX_VARINT_BYTES):
        raw = stream.read(1)
        if not raw:
            return None
        byte = raw[0]
        value |= (byte & 0x7F) << shift
        if byte < 0x80:
            return value
        shift += 7
    raise TruncatedSection(
        "Length prefix exceeds 64 bits",
        context={"offset": stream.tell() - MAX_VARINT_BYTES},
    )


def encode_uvarint(value: int) -> bytes:
    if value < 0:
        raise ValueError("varint value must be non-negative")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


@dataclasses.dataclass(frozen=True)
class ScanResult:
    """Where the end-of-stream marker sits.

    Attributes:
        offset: Position of the sentinel's own length prefix; bytes
            ``[0, offset)`` are kept on repair
        header_length: Decoded header length
        sections: Non-empty sections skipped before the sentinel
        file_size: Size of the scanned file
    """

    offset: int
    header_length: int
    sections: int
    file_size: int

    @property
    def trailing_bytes(self) -> int:
        return self.file_size - self.offset


def scan_stream(stream: BinaryIO, *, name: str = "<stream>") -> ScanResult:
    header_length = read_uvarint(stream)
    if header_length is None or header_length <= 0:
        raise NoHeader(f"No CAR header in {name}", context={"path": name})
    stream.seek(header_length, io.SEEK_CUR)
    sections = 0
    while True:
        offset = stream.tell()
        length = read_uvarint(stream)
        if length is None:
            raise TruncatedSection(
                f"Stream ended before an end-of-stream marker in {name}",
                context={"path": name, "offset": offset, "sections": sections},
            )
        if length == 0:
            size = stream.seek(0, io.SEEK_END)
            return ScanResult(offset, header_length, sections, size)
        stream.seek(length, io.SEEK_CUR)
        sections += 1


def scan_container(path: Path) -> ScanResult:
    """Locate the first zero-length section of the container at ``path``."""
    try:
        with path.open("rb") as f:
            result = scan_stream(f, name=str(path))
    except OSError as exc:
        raise ContainerError(
            f"Cannot read {path}: {exc.strerror or exc}",
            context={"path": str(path)},
        ) from exc
    logger.info(
        "Found end-of-stream marker in %s at offset %s (%s sections, %s trailing bytes)",
        path.name,
        result.offset,
        result.sections,
        result.trailing_bytes,
    )
    return result
