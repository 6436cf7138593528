"""Chunk planning for Azure block blob uploads.

Block ids are the base64 encoding of a zero-padded four digit sequence number
("0000", "0001", ...). Azure requires all block ids of a blob to have the same
length, which caps a single upload at 10,000 blocks.
"""

from __future__ import annotations

import base64
from collections.abc import Iterable
from dataclasses import dataclass
import math
from typing import BinaryIO

from intunepush.exceptions import PackagingError

SEQUENCE_DIGITS = 4
MAX_BLOCKS = 10**SEQUENCE_DIGITS


def sequence_id(index: int) -> str:
    return f"{index:0{SEQUENCE_DIGITS}d}"


def block_id(index: int) -> str:
    return base64.b64encode(sequence_id(index).encode("ascii")).decode("ascii")


@dataclass(frozen=True)
class Chunk:
    """One block of the encrypted payload.

    Attributes:
        index: Zero-based position in the blob.
        offset: Byte offset in the file.
        length: Number of bytes.
    """

    index: int
    offset: int
    length: int

    @property
    def sequence_id(self) -> str:
        return sequence_id(self.index)

    @property
    def block_id(self) -> str:
        return block_id(self.index)


def plan_chunks(total_size: int, chunk_size: int) -> list[Chunk]:
    """Split total_size bytes into consecutive chunks of chunk_size bytes.

    The last chunk holds the remainder. An empty file yields no chunks.

    Raises:
        ValueError: If chunk_size is not positive or total_size is negative.
        PackagingError: If more than MAX_BLOCKS chunks would be needed.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if total_size < 0:
        raise ValueError("total_size must not be negative")

    count = math.ceil(total_size / chunk_size)
    if count > MAX_BLOCKS:
        raise PackagingError(
            f"Payload of {total_size:,} bytes needs {count:,} blocks of "
            f"{chunk_size:,} bytes; at most {MAX_BLOCKS:,} are supported"
        )
    return [
        Chunk(index=i, offset=i * chunk_size, length=min(chunk_size, total_size - i * chunk_size))
        for i in range(count)
    ]


def read_chunk(stream: BinaryIO, chunk: Chunk) -> bytes:
    """Read exactly one chunk from an open binary file.

    Raises:
        PackagingError: If the file is shorter than planned (changed on disk).
    """
    stream.seek(chunk.offset)
    data = stream.read(chunk.length)
    if len(data) != chunk.length:
        raise PackagingError(
            f"Short read for chunk {chunk.index}: expected {chunk.length:,} bytes, "
            f"got {len(data):,}; the file changed during upload"
        )
    return data


def build_block_list_xml(block_ids: Iterable[str]) -> str:
    """Build the Put Block List body, keeping the given order."""
    latest = "".join(f"<Latest>{bid}</Latest>" for bid in block_ids)
    return f'<?xml version="1.0" encoding="utf-8"?><BlockList>{latest}</BlockList>'
