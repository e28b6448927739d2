"""Store-only ZIP writer.

Entries are written uncompressed with their CRC-32 and sizes in the local
header, so no data descriptors follow them. Identical entries and timestamps
always produce identical bytes.
"""

import struct
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

LOCAL_HEADER_SIGNATURE = 0x04034B50
CENTRAL_HEADER_SIGNATURE = 0x02014B50
END_OF_CENTRAL_DIRECTORY_SIGNATURE = 0x06054B50

LOCAL_HEADER_SIZE = 30
CENTRAL_HEADER_SIZE = 46
END_RECORD_SIZE = 22

ZIP_VERSION = 20  # 2.0
STORED = 0


def _build_crc32_table() -> Tuple[int, ...]:
    table = []
    for i in range(256):
        value = i
        for _ in range(8):
            if value & 1:
                value = 0xEDB88320 ^ (value >> 1)
            else:
                value >>= 1
        table.append(value)
    return tuple(table)


CRC32_TABLE = _build_crc32_table()


def compute_crc32(data: bytes) -> int:
    crc = 0xFFFFFFFF
    for byte in data:
        crc = (crc >> 8) ^ CRC32_TABLE[(crc ^ byte) & 0xFF]
    return crc ^ 0xFFFFFFFF


def dos_date_time(timestamp: datetime) -> Tuple[int, int]:
    """Pack a timestamp into MS-DOS (time, date) words"""
    year = max(1980, min(timestamp.year, 2107))
    dos_time = (
        ((timestamp.hour & 0x1F) << 11)
        | ((timestamp.minute & 0x3F) << 5)
        | ((timestamp.second // 2) & 0x1F)
    )
    dos_date = (
        (((year - 1980) & 0x7F) << 9)
        | ((timestamp.month & 0xF) << 5)
        | (timestamp.day & 0x1F)
    )
    return dos_time, dos_date


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    data: bytes
    timestamp: Optional[datetime] = None


def create_zip(entries: Sequence[ArchiveEntry]) -> bytes:
    """Build a ZIP archive holding one stored entry per input, in order"""
    now = datetime.now()
    local_parts: List[bytes] = []
    central_parts: List[bytes] = []
    offset = 0

    for entry in entries:
        name = entry.name.encode("utf-8")
        data = bytes(entry.data)
        crc = compute_crc32(data)
        dos_time, dos_date = dos_date_time(entry.timestamp or now)

        local_header = struct.pack(
            "<IHHHHHIIIHH",
            LOCAL_HEADER_SIGNATURE,
            ZIP_VERSION,  # version needed to extract
            0,  # flags
            STORED,
            dos_time,
            dos_date,
            crc,
            len(data),  # compressed size
            len(data),  # uncompressed size
            len(name),
            0,  # extra field length
        )
        central_header = struct.pack(
            "<IHHHHHHIIIHHHHHII",
            CENTRAL_HEADER_SIGNATURE,
            ZIP_VERSION,  # version made by
            ZIP_VERSION,  # version needed to extract
            0,
            STORED,
            dos_time,
            dos_date,
            crc,
            len(data),
            len(data),
            len(name),
            0,  # extra field length
            0,  # comment length
            0,  # disk number start
            0,  # internal attributes
            0,  # external attributes
            offset,
        )

        local_parts.append(local_header + name + data)
        central_parts.append(central_header + name)
        offset += len(local_header) + len(name) + len(data)

    central_directory = b"".join(central_parts)
    end_record = struct.pack(
        "<IHHHHIIH",
        END_OF_CENTRAL_DIRECTORY_SIGNATURE,
        0,  # this disk
        0,  # disk with central directory
        len(central_parts),
        len(central_parts),
        len(central_directory),
        offset,
        0,  # comment length
    )
    return b"".join(local_parts) + central_directory + end_record
