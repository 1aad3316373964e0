"""Operations on a mounted WFS disk image: lookup, files, directories, xattrs."""

from __future__ import annotations

import contextlib
import errno
import mmap
import os
import posixpath
import stat
import struct
import time
from dataclasses import dataclass

from wfsimg.colors import (
    ANSI_RESET,
    color_ansi,
    color_name,
    parse_color_name,
    strip_ansi_codes,
)
from wfsimg.layout import (
    BITS_PER_WORD,
    BLOCK_SIZE,
    D_BLOCK,
    DENTRY_SIZE,
    IND_BLOCK,
    INODE_SIZE,
    MAX_NAME,
    N_BLOCKS,
    POINTER_SIZE,
    POINTERS_PER_BLOCK,
    SUPERBLOCK_SIZE,
    Color,
    Dentry,
    Inode,
    Superblock,
)

COLOR_XATTR = "user.color"
_WORD = struct.Struct("<I")
_POINTER = struct.Struct("<q")
_FULL_WORD = 0xFFFFFFFF
_XATTR_VALUE_LIMIT = 63


def _error(code: int, what: str = "") -> OSError:
    return OSError(code, os.strerror(code), what or None)


def _now() -> int:
    return int(time.time())


@dataclass(frozen=True)
class FileStat:
    """Attributes of a file or directory."""

    mode: int
    uid: int
    gid: int
    size: int
    atime: int
    mtime: int
    ctime: int
    nlink: int


@dataclass(frozen=True)
class FsStat:
    """Filesystem-wide usage figures."""

    bsize: int
    frsize: int
    blocks: int
    bfree: int
    bavail: int
    files: int
    ffree: int
    namemax: int


class FileSystem:
    """A WFS filesystem held in a writable buffer such as an mmap or bytearray."""

    def __init__(self, image):
        self._image = image
        self._file = None
        self.sb = Superblock.from_bytes(bytes(image[:SUPERBLOCK_SIZE]))
        if self._retrieve(0) is None:
            raise ValueError("image has no root directory")

    @classmethod
    def open(cls, path) -> FileSystem:
        handle = open(path, "r+b")
        try:
            region = mmap.mmap(handle.fileno(), 0)
        except Exception:
            handle.close()
            raise
        try:
            fs = cls(region)
        except Exception:
            region.close()
            handle.close()
            raise
        fs._file = handle
        return fs

    def close(self) -> None:
        if isinstance(self._image, mmap.mmap) and not self._image.closed:
            self._image.flush()
            self._image.close()
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> FileSystem:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # ---- raw image access -------------------------------------------------

    def _word(self, offset: int) -> int:
        return _WORD.unpack_from(self._image, offset)[0]

    def _set_word(self, offset: int, value: int) -> None:
        _WORD.pack_into(self._image, offset, value)

    def _pointer(self, offset: int) -> int:
        return _POINTER.unpack_from(self._image, offset)[0]

    def _set_pointer(self, offset: int, value: int) -> None:
        _POINTER.pack_into(self._image, offset, value)

    def _inode_offset(self, num: int) -> int:
        return self.sb.i_blocks_ptr + num * BLOCK_SIZE

    def _save(self, inode: Inode) -> None:
        off = self._inode_offset(inode.num)
        self._image[off:off + INODE_SIZE] = inode.pack()

    def _retrieve(self, num: int) -> Inode | None:
        word = self._word(self.sb.i_bitmap_ptr + (num // BITS_PER_WORD) * 4)
        if not word & (1 << (num % BITS_PER_WORD)):
            return None
        off = self._inode_offset(num)
        return Inode.from_bytes(bytes(self._image[off:off + INODE_SIZE]))

    def _toggle_bit(self, bitmap_ptr: int, position: int) -> None:
        off = bitmap_ptr + (position // BITS_PER_WORD) * 4
        self._set_word(off, self._word(off) ^ (1 << (position % BITS_PER_WORD)))

    def _allocate_bit(self, bitmap_ptr: int, words: int) -> int | None:
        for i in range(words):
            off = bitmap_ptr + i * 4
            word = self._word(off)
            if word == _FULL_WORD:
                continue
            k = (~word & (word + 1)).bit_length() - 1
            self._set_word(off, word | (1 << k))
            return BITS_PER_WORD * i + k
        return None

    def _allocate_data_block(self) -> int:
        num = self._allocate_bit(self.sb.d_bitmap_ptr,
                                 self.sb.num_data_blocks // BITS_PER_WORD)
        return 0 if num is None else self.sb.d_blocks_ptr + BLOCK_SIZE * num

    def _allocate_inode(self) -> Inode:
        num = self._allocate_bit(self.sb.i_bitmap_ptr,
                                 self.sb.num_inodes // BITS_PER_WORD)
        if num is None:
            raise _error(errno.ENOSPC)
        return Inode(num=num)

    def _free_block(self, blk: int) -> None:
        self._image[blk:blk + BLOCK_SIZE] = bytes(BLOCK_SIZE)
        self._toggle_bit(self.sb.d_bitmap_ptr,
                         (blk - self.sb.d_blocks_ptr) // BLOCK_SIZE)

    def _free_inode(self, inode: Inode) -> None:
        off = self._inode_offset(inode.num)
        self._image[off:off + BLOCK_SIZE] = bytes(BLOCK_SIZE)
        self._toggle_bit(self.sb.i_bitmap_ptr, inode.num)

    def _address(self, inode: Inode, offset: int, alloc: bool) -> int | None:
        """Image offset of byte `offset` of the inode's data, allocating if asked."""
        blocknum = offset // BLOCK_SIZE
        if blocknum > D_BLOCK + POINTERS_PER_BLOCK:
            raise _error(errno.EFBIG)
        if blocknum > D_BLOCK:
            index = blocknum - IND_BLOCK
            if inode.blocks[IND_BLOCK] == 0:
                inode.blocks[IND_BLOCK] = self._allocate_data_block()
                if inode.blocks[IND_BLOCK] == 0:
                    if alloc:
                        raise _error(errno.ENOSPC)
                    return None
            slot = inode.blocks[IND_BLOCK] + index * POINTER_SIZE
            block = self._pointer(slot)
            if alloc and block == 0:
                block = self._allocate_data_block()
                self._set_pointer(slot, block)
        else:
            block = inode.blocks[blocknum]
            if alloc and block == 0:
                block = self._allocate_data_block()
                inode.blocks[blocknum] = block
        if block == 0:
            if alloc:
                raise _error(errno.ENOSPC)
            return None
        return block + offset % BLOCK_SIZE

    # ---- directories ------------------------------------------------------

    def _dentries(self, directory: Inode):
        for off in range(0, directory.size, DENTRY_SIZE):
            addr = self._address(directory, off, False)
            if addr is None:
                continue
            yield addr, Dentry.from_bytes(bytes(self._image[addr:addr + DENTRY_SIZE]))

    def _dentry_to_num(self, name: str, directory: Inode) -> int | None:
        wanted = name.encode("utf-8", "surrogateescape")[:MAX_NAME]
        for _, dent in self._dentries(directory):
            if dent.num != 0 and dent.name.encode("utf-8", "surrogateescape") == wanted:
                return dent.num
        return None

    def _write_dentry(self, addr: int, name: str, num: int) -> None:
        self._image[addr:addr + DENTRY_SIZE] = Dentry(name, num).pack()

    def _add_dentry(self, parent: Inode, num: int, name: str) -> None:
        for addr, dent in self._dentries(parent):
            if dent.num == 0:
                self._write_dentry(addr, name, num)
                break
        else:
            addr = self._address(parent, (parent.size // BLOCK_SIZE) * BLOCK_SIZE, True)
            self._write_dentry(addr, name, num)
            parent.size += BLOCK_SIZE
        parent.nlinks += 1
        parent.mtim = parent.ctim = _now()

    def _remove_dentry(self, directory: Inode, num: int) -> bool:
        for addr, dent in self._dentries(directory):
            if dent.num == num:
                self._write_dentry(addr, dent.name, 0)
                directory.mtim = directory.ctim = _now()
                return True
        return False

    # ---- public operations ------------------------------------------------

    def lookup(self, path: str) -> Inode:
        """Resolve an absolute path to its inode; raise FileNotFoundError."""
        remaining = strip_ansi_codes(path)[1:]
        inode = self._retrieve(0)
        while remaining != "":
            name, _, remaining = remaining.partition("/")
            num = self._dentry_to_num(name, inode)
            found = None if num is None else self._retrieve(num)
            if found is None:
                raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), path)
            inode = found
        return inode

    def _create(self, path: str, mode: int) -> Inode:
        parent = self.lookup(posixpath.dirname(path))
        inode = self._allocate_inode()
        now = _now()
        inode.mode = mode
        inode.uid = os.getuid()
        inode.gid = os.getgid()
        inode.size = 0
        inode.nlinks = 1
        inode.atim = inode.mtim = inode.ctim = now
        inode.color = Color.NONE
        inode.blocks = [0] * N_BLOCKS
        self._save(inode)
        try:
            self._add_dentry(parent, inode.num, posixpath.basename(path.rstrip("/")))
        finally:
            self._save(parent)
        return inode

    def mknod(self, path: str, mode: int = 0o644) -> Inode:
        return self._create(path, stat.S_IFREG | mode)

    def mkdir(self, path: str, mode: int = 0o755) -> Inode:
        return self._create(path, stat.S_IFDIR | mode)

    def getattr(self, path: str) -> FileStat:
        inode = self.lookup(path)
        return FileStat(inode.mode, inode.uid, inode.gid, inode.size,
                        inode.atim, inode.mtim, inode.ctim, inode.nlinks)

    def read(self, path: str, length: int, offset: int = 0) -> bytes:
        inode = self.lookup(path)
        out = bytearray()
        pos = offset
        while len(out) < length and pos < inode.size:
            chunk = min(BLOCK_SIZE - pos % BLOCK_SIZE, inode.size - pos,
                        length - len(out))
            addr = self._address(inode, pos, False)
            out += bytes(chunk) if addr is None else self._image[addr:addr + chunk]
            pos += chunk
        if out:
            inode.atim = _now()
        self._save(inode)
        return bytes(out)

    def write(self, path: str, data: bytes, offset: int = 0) -> int:
        inode = self.lookup(path)
        growth = len(data) - (inode.size - offset)
        written = 0
        pos = offset
        try:
            while written < len(data):
                chunk = min(BLOCK_SIZE - pos % BLOCK_SIZE, len(data) - written)
                addr = self._address(inode, pos, True)
                self._image[addr:addr + chunk] = data[written:written + chunk]
                pos += chunk
                written += chunk
        finally:
            self._save(inode)
        inode.size += max(growth, 0)
        inode.mtim = inode.ctim = _now()
        self._save(inode)
        return written

    def readdir(self, path: str, caller: str | None = None) -> list[str]:
        """List entries; a caller named "ls" sees coloured names."""
        directory = self.lookup(path)
        names = [".", ".."]
        for _, dent in self._dentries(directory):
            if dent.num == 0:
                continue
            child = self._retrieve(dent.num)
            if caller == "ls" and child is not None and child.color != Color.NONE:
                names.append(f"{color_ansi(child.color)}{dent.name}{ANSI_RESET}")
            else:
                names.append(dent.name)
        directory.atim = _now()
        self._save(directory)
        return names

    def unlink(self, path: str) -> None:
        parent = self.lookup(posixpath.dirname(path))
        inode = self.lookup(path)
        ind = inode.blocks[IND_BLOCK]
        if ind != 0:
            for i in range(POINTERS_PER_BLOCK):
                blk = self._pointer(ind + i * POINTER_SIZE)
                if blk != 0:
                    self._free_block(blk)
        for blk in inode.blocks:
            if blk != 0:
                self._free_block(blk)
        self._remove_dentry(parent, inode.num)
        self._save(parent)
        self._free_inode(inode)

    def rmdir(self, path: str) -> None:
        with contextlib.suppress(OSError):
            self.unlink(path)

    def _popcount(self, bitmap_ptr: int, words: int) -> int:
        return sum(bin(self._word(bitmap_ptr + i * 4)).count("1") for i in range(words))

    def statfs(self) -> FsStat:
        used_inodes = self._popcount(self.sb.i_bitmap_ptr, self.sb.num_inodes // BITS_PER_WORD)
        used_blocks = self._popcount(self.sb.d_bitmap_ptr,
                                     self.sb.num_data_blocks // BITS_PER_WORD)
        bfree = self.sb.num_data_blocks - used_blocks
        return FsStat(BLOCK_SIZE, BLOCK_SIZE, self.sb.num_data_blocks, bfree, bfree,
                      self.sb.num_inodes, self.sb.num_inodes - used_inodes, MAX_NAME)

    @staticmethod
    def _check_xattr(name: str) -> None:
        if name != COLOR_XATTR:
            raise _error(errno.EOPNOTSUPP, name)

    def setxattr(self, path: str, name: str, value) -> None:
        self._check_xattr(name)
        inode = self.lookup(path)
        if isinstance(value, str):
            value = value.encode("utf-8", "surrogateescape")
        try:
            code = parse_color_name(bytes(value[:_XATTR_VALUE_LIMIT]))
        except ValueError:
            raise _error(errno.EINVAL, path) from None
        inode.color = code
        inode.ctim = _now()
        self._save(inode)

    def getxattr(self, path: str, name: str) -> str:
        self._check_xattr(name)
        return color_name(self.lookup(path).color)

    def removexattr(self, path: str, name: str) -> None:
        self._check_xattr(name)
        inode = self.lookup(path)
        inode.color = Color.NONE
        inode.ctim = _now()
        self._save(inode)

    def _bitmap_bits(self, ptr: int, nbytes: int) -> int:
        return sum(bin(b).count("1") for b in self._image[ptr:ptr + nbytes])

    def inode_count(self) -> int:
        return self._bitmap_bits(self.sb.i_bitmap_ptr, self.sb.num_inodes // 8)

    def data_block_count(self) -> int:
        return self._bitmap_bits(self.sb.d_bitmap_ptr, self.sb.num_data_blocks // 8)