"""Creating and verifying the MBR/FAT test disk used by the VM tests."""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from datetime import date
from typing import Iterator, Union

SECTOR_SIZE = 512
NUM_SECTORS = 1234
VOLUME_LABEL = b"MbrTestDisk"

_PARTITION_TABLE_OFFSET = 446
_PARTITION_ENTRY_SIZE = 16
_DISK_SIGNATURE_OFFSET = 440
_ENTRY_SIZE = 32

_ATTR_VOLUME_ID = 0x08
_ATTR_DIRECTORY = 0x10
_ATTR_ARCHIVE = 0x20
_ATTR_LFN = 0x0F

_DIR_ENTRY = struct.Struct("<11sBBBHHHHHHHI")

# Layout for a FAT12 volume on the 1233-sector partition.
_RESERVED_SECTORS = 1
_NUM_FATS = 2
_FAT_SECTORS = 4
_ROOT_ENTRIES = 512
_SECTORS_PER_CLUSTER = 1

_EXPECTED_TOTAL_CLUSTERS = 1192
_EXPECTED_FREE_CLUSTERS = 1190


class DiskCheckError(Exception):
    """The test disk does not have the expected contents."""


@dataclass(frozen=True)
class _Entry:
    name: str
    attr: int
    cluster: int
    size: int

    @property
    def is_dir(self) -> bool:
        return bool(self.attr & _ATTR_DIRECTORY)


def _fat_date(d: date) -> int:
    return ((d.year - 1980) << 9) | (d.month << 5) | d.day


def _lfn_checksum(short_name: bytes) -> int:
    total = 0
    for byte in short_name:
        total = (((total & 1) << 7) + (total >> 1) + byte) & 0xFF
    return total


def _short_name(name: str) -> tuple[bytes, bool]:
    """Return the 11-byte short name and whether a long name is needed."""
    if name in (".", ".."):
        return name.encode().ljust(11), False
    base, dot, ext = name.rpartition(".")
    if not dot:
        base, ext = name, ""
    clean_base = "".join(c for c in base.upper() if c.isalnum() or c in "_-~")
    clean_ext = "".join(c for c in ext.upper() if c.isalnum() or c in "_-~")[:3]
    if len(clean_base) > 8 or clean_base != base.upper():
        clean_base = clean_base[:6] + "~1"
    short = clean_base.ljust(8).encode("ascii") + clean_ext.ljust(3).encode("ascii")
    formatted = clean_base + ("." + clean_ext if clean_ext else "")
    return short, formatted != name


def _format_short(raw: bytes) -> str:
    base = raw[:8].decode("latin-1").rstrip()
    ext = raw[8:].decode("latin-1").rstrip()
    return base + ("." + ext if ext else "")


def _lfn_entries(name: str, checksum: int) -> list[bytes]:
    units = list(struct.unpack(f"<{len(name)}H", name.encode("utf-16-le")))
    if len(units) % 13:
        units.append(0)
    while len(units) % 13:
        units.append(0xFFFF)
    chunks = [units[i : i + 13] for i in range(0, len(units), 13)]
    entries = []
    for seq, chunk in enumerate(chunks, start=1):
        order = seq | (0x40 if seq == len(chunks) else 0)
        raw = bytearray(_ENTRY_SIZE)
        raw[0] = order
        struct.pack_into("<5H", raw, 1, *chunk[:5])
        raw[11] = _ATTR_LFN
        raw[13] = checksum
        struct.pack_into("<6H", raw, 14, *chunk[5:11])
        struct.pack_into("<2H", raw, 28, *chunk[11:13])
        entries.append(bytes(raw))
    entries.reverse()
    return entries


def _dir_entries(
    name: str,
    attr: int,
    cluster: int,
    size: int,
    created: date,
    accessed: date,
    modified: date,
) -> list[bytes]:
    short, needs_long = _short_name(name)
    short_entry = _DIR_ENTRY.pack(
        short, attr, 0, 0, 0, _fat_date(created), _fat_date(accessed),
        0, 0, _fat_date(modified), cluster, size,
    )
    longs = _lfn_entries(name, _lfn_checksum(short)) if needs_long else []
    return [*longs, short_entry]


def _append_entries(region: memoryview, entries: list[bytes]) -> None:
    slots = len(region) // _ENTRY_SIZE
    for start in range(slots):
        if region[start * _ENTRY_SIZE] == 0:
            if start + len(entries) > slots:
                break
            for offset, raw in enumerate(entries, start=start):
                pos = offset * _ENTRY_SIZE
                region[pos : pos + _ENTRY_SIZE] = raw
            return
    raise DiskCheckError("directory is full")


class _FatVolume:
    """Minimal FAT12/FAT16 access over a partition's bytes."""

    def __init__(self, view: memoryview) -> None:
        self.view = view
        (self.bytes_per_sector,) = struct.unpack_from("<H", view, 11)
        self.sectors_per_cluster = view[13]
        (self.reserved,) = struct.unpack_from("<H", view, 14)
        self.num_fats = view[16]
        (self.root_entries,) = struct.unpack_from("<H", view, 17)
        (total16,) = struct.unpack_from("<H", view, 19)
        (self.fat_sectors,) = struct.unpack_from("<H", view, 22)
        (total32,) = struct.unpack_from("<I", view, 32)
        total_sectors = total16 or total32
        if self.bytes_per_sector == 0 or self.sectors_per_cluster == 0:
            raise DiskCheckError("partition does not hold a FAT file system")
        self.fat_start = self.reserved * self.bytes_per_sector
        self.root_start = (
            self.reserved + self.num_fats * self.fat_sectors
        ) * self.bytes_per_sector
        root_bytes = self.root_entries * _ENTRY_SIZE
        root_sectors = -(-root_bytes // self.bytes_per_sector)
        self.data_start = self.root_start + root_sectors * self.bytes_per_sector
        data_sectors = total_sectors - (self.data_start // self.bytes_per_sector)
        self.total_clusters = data_sectors // self.sectors_per_cluster
        self.fat12 = self.total_clusters < 4085
        self.cluster_size = self.bytes_per_sector * self.sectors_per_cluster

    @property
    def root_region(self) -> memoryview:
        return self.view[self.root_start : self.root_start + self.root_entries * _ENTRY_SIZE]

    @property
    def end_marker(self) -> int:
        return 0xFF8 if self.fat12 else 0xFFF8

    def fat_get(self, n: int) -> int:
        if self.fat12:
            off = self.fat_start + n * 3 // 2
            (value,) = struct.unpack_from("<H", self.view, off)
            return value >> 4 if n & 1 else value & 0xFFF
        (value,) = struct.unpack_from("<H", self.view, self.fat_start + n * 2)
        return value

    def fat_set(self, n: int, value: int) -> None:
        for fat in range(self.num_fats):
            base = self.fat_start + fat * self.fat_sectors * self.bytes_per_sector
            if self.fat12:
                off = base + n * 3 // 2
                (old,) = struct.unpack_from("<H", self.view, off)
                if n & 1:
                    new = (old & 0x000F) | (value << 4)
                else:
                    new = (old & 0xF000) | value
                struct.pack_into("<H", self.view, off, new)
            else:
                struct.pack_into("<H", self.view, base + n * 2, value)

    def cluster(self, n: int) -> memoryview:
        start = self.data_start + (n - 2) * self.cluster_size
        return self.view[start : start + self.cluster_size]

    def chain(self, first: int) -> Iterator[int]:
        n = first
        seen = set()
        while 2 <= n < self.end_marker and n not in seen:
            seen.add(n)
            yield n
            n = self.fat_get(n)

    def allocate(self) -> int:
        for n in range(2, self.total_clusters + 2):
            if self.fat_get(n) == 0:
                self.fat_set(n, 0xFFF if self.fat12 else 0xFFFF)
                self.cluster(n)[:] = bytes(self.cluster_size)
                return n
        raise DiskCheckError("no free clusters")

    def free_clusters(self) -> int:
        return sum(
            1 for n in range(2, self.total_clusters + 2) if self.fat_get(n) == 0
        )

    def dir_regions(self, cluster: int) -> Iterator[memoryview]:
        if cluster == 0:
            yield self.root_region
        else:
            for n in self.chain(cluster):
                yield self.cluster(n)

    def entries(self, cluster: int) -> Iterator[_Entry]:
        long_parts: dict[int, str] = {}
        for region in self.dir_regions(cluster):
            for pos in range(0, len(region), _ENTRY_SIZE):
                raw = bytes(region[pos : pos + _ENTRY_SIZE])
                if raw[0] == 0:
                    return
                if raw[0] == 0xE5:
                    long_parts.clear()
                    continue
                if raw[11] == _ATTR_LFN:
                    units = raw[1:11] + raw[14:26] + raw[28:32]
                    text = units.decode("utf-16-le", errors="replace")
                    long_parts[raw[0] & 0x1F] = text.split("\x00", 1)[0]
                    continue
                fields = _DIR_ENTRY.unpack(raw)
                attr = fields[1]
                if attr & _ATTR_VOLUME_ID:
                    long_parts.clear()
                    continue
                if long_parts:
                    name = "".join(long_parts[k] for k in sorted(long_parts))
                else:
                    name = _format_short(fields[0])
                long_parts.clear()
                cluster_no = (fields[7] << 16) | fields[10] if not self.fat12 else fields[10]
                yield _Entry(name, attr, cluster_no, fields[11])

    def lookup(self, cluster: int, name: str) -> _Entry:
        for entry in self.entries(cluster):
            if entry.name.lower() == name.lower():
                return entry
        raise DiskCheckError(f"not found: {name}")

    def read_file(self, entry: _Entry) -> bytes:
        data = b"".join(bytes(self.cluster(n)) for n in self.chain(entry.cluster))
        return data[: entry.size]


def _partition_range(disk: Union[bytes, bytearray]) -> tuple[int, int]:
    if disk[510:512] != b"\x55\xaa":
        raise DiskCheckError("missing MBR signature")
    start_lba, sectors = struct.unpack_from(
        "<II", disk, _PARTITION_TABLE_OFFSET + 8
    )
    start = start_lba * SECTOR_SIZE
    end = start + sectors * SECTOR_SIZE
    if sectors == 0 or end > len(disk):
        raise DiskCheckError("invalid partition entry")
    return start, end


def _write_mbr(disk: bytearray) -> None:
    disk[_DISK_SIGNATURE_OFFSET : _DISK_SIGNATURE_OFFSET + 4] = b"\xff" * 4
    entry = struct.pack(
        "<B3sB3sII", 0x00, bytes(3), 0x06, bytes(3), 1, NUM_SECTORS - 1
    )
    disk[_PARTITION_TABLE_OFFSET : _PARTITION_TABLE_OFFSET + _PARTITION_ENTRY_SIZE] = entry
    disk[510:512] = b"\x55\xaa"


def _format_fat12(part: memoryview, hidden_sectors: int) -> None:
    part[:] = bytes(len(part))
    boot = bytearray(SECTOR_SIZE)
    boot[0:3] = b"\xeb\x3c\x90"
    boot[3:11] = b"MSWIN4.1"
    struct.pack_into(
        "<HBHBHHBHHHII",
        boot,
        11,
        SECTOR_SIZE,
        _SECTORS_PER_CLUSTER,
        _RESERVED_SECTORS,
        _NUM_FATS,
        _ROOT_ENTRIES,
        len(part) // SECTOR_SIZE,
        0xF8,
        _FAT_SECTORS,
        32,
        64,
        1,
        0,
    )
    boot[36] = 0x80
    boot[38] = 0x29
    struct.pack_into("<I", boot, 39, 0x12345678)
    boot[43:54] = VOLUME_LABEL
    boot[54:62] = b"FAT12   "
    boot[510:512] = b"\x55\xaa"
    part[:SECTOR_SIZE] = boot

    volume = _FatVolume(part)
    volume.fat_set(0, 0xFF8)
    volume.fat_set(1, 0xFFF)
    label = _DIR_ENTRY.pack(VOLUME_LABEL, _ATTR_VOLUME_ID, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0)
    _append_entries(volume.root_region, [label])


def _read_volume_label(volume: _FatVolume) -> str:
    region = volume.root_region
    for pos in range(0, len(region), _ENTRY_SIZE):
        raw = bytes(region[pos : pos + _ENTRY_SIZE])
        if raw[0] == 0:
            break
        if raw[0] != 0xE5 and raw[11] != _ATTR_LFN and raw[11] & _ATTR_VOLUME_ID:
            return raw[:11].decode("latin-1").rstrip()
    raise DiskCheckError("volume label missing")


def _init_fat_test_partition(part: memoryview) -> None:
    _format_fat12(part, hidden_sectors=1)
    volume = _FatVolume(part)

    if _read_volume_label(volume) != VOLUME_LABEL.decode():
        raise DiskCheckError("unexpected volume label")

    today = date.today()
    dir_cluster = volume.allocate()
    dir_region = volume.cluster(dir_cluster)
    _append_entries(
        dir_region,
        _dir_entries(".", _ATTR_DIRECTORY, dir_cluster, 0, today, today, today)
        + _dir_entries("..", _ATTR_DIRECTORY, 0, 0, today, today, today),
    )
    _append_entries(
        volume.root_region,
        _dir_entries("test_dir", _ATTR_DIRECTORY, dir_cluster, 0, today, today, today),
    )

    content = b"test input data"
    file_cluster = volume.allocate()
    volume.cluster(file_cluster)[: len(content)] = content
    _append_entries(
        dir_region,
        _dir_entries(
            "test_input.txt",
            _ATTR_ARCHIVE,
            file_cluster,
            len(content),
            created=date(2000, 1, 24),
            accessed=date(2001, 2, 25),
            modified=date(2002, 3, 26),
        ),
    )

    # These numbers are checked by the test runner too.
    if volume.total_clusters != _EXPECTED_TOTAL_CLUSTERS:
        raise DiskCheckError(f"unexpected total clusters: {volume.total_clusters}")
    if volume.free_clusters() != _EXPECTED_FREE_CLUSTERS:
        raise DiskCheckError(f"unexpected free clusters: {volume.free_clusters()}")


def build_mbr_test_disk() -> bytearray:
    """Return the bytes of an MBR disk with one prepared FAT partition."""
    disk = bytearray(NUM_SECTORS * SECTOR_SIZE)
    _write_mbr(disk)
    start, end = _partition_range(disk)
    _init_fat_test_partition(memoryview(disk)[start:end])
    return disk


def create_mbr_test_disk(path: Union[str, "os.PathLike[str]"]) -> None:
    """Write the test disk image to ``path``."""
    with open(path, "wb") as f:
        f.write(build_mbr_test_disk())


def check_mbr_test_disk(path: Union[str, "os.PathLike[str]"]) -> None:
    """Verify that the test runner modified the disk as expected."""
    print("Verifying test disk has been correctly modified")
    with open(path, "rb") as f:
        disk = bytearray(f.read())
    start, end = _partition_range(disk)
    volume = _FatVolume(memoryview(disk)[start:end])

    new_file = volume.lookup(0, "new_test_file.txt")
    data = volume.read_file(new_file)
    if data != b"test output data":
        raise DiskCheckError(f"unexpected new file contents: {data!r}")

    test_dir = volume.lookup(0, "test_dir")
    children = [entry.name for entry in volume.entries(test_dir.cluster)]
    if children != [".", ".."]:
        raise DiskCheckError(f"unexpected test_dir contents: {children}")