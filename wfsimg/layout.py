"""On-disk structures of a WFS disk image.

The image is laid out as::

    | superblock | inode bitmap | data bitmap | inodes | data blocks |

Every inode occupies one block-sized slot in the inode region. All integers
are little-endian with the field widths and padding of a 64-bit Linux build.
"""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field

BLOCK_SIZE = 512
MAX_NAME = 28

D_BLOCK = 6
IND_BLOCK = D_BLOCK + 1
N_BLOCKS = IND_BLOCK + 1

BITS_PER_WORD = 32

_SUPERBLOCK = struct.Struct("<QQqqqq")
_INODE = struct.Struct(f"<iIIIqi4xqqqB7x{N_BLOCKS}q")
_DENTRY = struct.Struct(f"<{MAX_NAME}si")
_POINTER = struct.Struct("<q")

SUPERBLOCK_SIZE = _SUPERBLOCK.size
INODE_SIZE = _INODE.size
DENTRY_SIZE = _DENTRY.size
POINTER_SIZE = _POINTER.size
POINTERS_PER_BLOCK = BLOCK_SIZE // POINTER_SIZE
DENTRIES_PER_BLOCK = BLOCK_SIZE // DENTRY_SIZE


class Color(enum.IntEnum):
    """Palette of colour tags an inode can carry."""

    NONE = 0
    RED = 1
    GREEN = 2
    BLUE = 3
    YELLOW = 4
    MAGENTA = 5
    CYAN = 6
    WHITE = 7
    BLACK = 8
    ORANGE = 9
    PURPLE = 10
    GRAY = 11


def _unpack(layout: struct.Struct, data: bytes, what: str) -> tuple:
    if len(data) < layout.size:
        raise ValueError(
            f"{what} needs {layout.size} bytes, got {len(data)}"
        )
    return layout.unpack_from(data)


@dataclass
class Superblock:
    """Describes where each region of the image starts."""

    num_inodes: int
    num_data_blocks: int
    i_bitmap_ptr: int
    d_bitmap_ptr: int
    i_blocks_ptr: int
    d_blocks_ptr: int

    def pack(self) -> bytes:
        return _SUPERBLOCK.pack(
            self.num_inodes,
            self.num_data_blocks,
            self.i_bitmap_ptr,
            self.d_bitmap_ptr,
            self.i_blocks_ptr,
            self.d_blocks_ptr,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> Superblock:
        return cls(*_unpack(_SUPERBLOCK, data, "superblock"))


@dataclass
class Inode:
    """File metadata plus direct and single-indirect block offsets."""

    num: int = 0
    mode: int = 0
    uid: int = 0
    gid: int = 0
    size: int = 0
    nlinks: int = 0
    atim: int = 0
    mtim: int = 0
    ctim: int = 0
    color: int = Color.NONE
    blocks: list[int] = field(default_factory=lambda: [0] * N_BLOCKS)

    def pack(self) -> bytes:
        if len(self.blocks) != N_BLOCKS:
            raise ValueError(f"an inode holds exactly {N_BLOCKS} block pointers")
        return _INODE.pack(
            self.num,
            self.mode,
            self.uid,
            self.gid,
            self.size,
            self.nlinks,
            self.atim,
            self.mtim,
            self.ctim,
            int(self.color),
            *self.blocks,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> Inode:
        (num, mode, uid, gid, size, nlinks, atim, mtim, ctim, color,
         *blocks) = _unpack(_INODE, data, "inode")
        return cls(num, mode, uid, gid, size, nlinks, atim, mtim, ctim,
                   color, list(blocks))


@dataclass
class Dentry:
    """A directory entry; inode number 0 marks a free slot."""

    name: str = ""
    num: int = 0

    def pack(self) -> bytes:
        raw = self.name.encode("utf-8", "surrogateescape")[:MAX_NAME]
        return _DENTRY.pack(raw, self.num)

    @classmethod
    def from_bytes(cls, data: bytes) -> Dentry:
        raw, num = _unpack(_DENTRY, data, "directory entry")
        name = raw.split(b"\0", 1)[0].decode("utf-8", "surrogateescape")
        return cls(name, num)