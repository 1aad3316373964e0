"""Format a disk image with an empty WFS filesystem."""

from __future__ import annotations

import getopt
import os
import re
import stat
import struct
import sys
import time

from wfsimg.layout import (
    BITS_PER_WORD,
    BLOCK_SIZE,
    SUPERBLOCK_SIZE,
    Color,
    Inode,
    Superblock,
)

USAGE = "usage: mkfs -d <disk img> -i <num inodes> -b <num data blocks>"


def roundup(num: int, factor: int) -> int:
    """Round num up to the next multiple of factor."""
    remainder = num % factor
    return num if remainder == 0 else num + (factor - remainder)


def setup_superblock(inodes: int, blocks: int, size: int) -> Superblock:
    """Lay out the regions for an image of the given size.

    Counts are rounded up to whole bitmap words. Raises ValueError if the
    requested inodes and blocks do not fit.
    """
    inodes = roundup(inodes, BITS_PER_WORD)
    blocks = roundup(blocks, BITS_PER_WORD)

    i_bitmap_ptr = SUPERBLOCK_SIZE
    d_bitmap_ptr = i_bitmap_ptr + inodes // 8
    i_blocks_ptr = d_bitmap_ptr + blocks // 8
    d_blocks_ptr = i_blocks_ptr + inodes * BLOCK_SIZE

    needed = inodes * BLOCK_SIZE + blocks * BLOCK_SIZE + i_blocks_ptr
    if not needed < size:
        raise ValueError(
            f"too many blocks requested: {inodes} inodes and {blocks} blocks "
            f"need more than {size} bytes"
        )
    return Superblock(inodes, blocks, i_bitmap_ptr, d_bitmap_ptr,
                      i_blocks_ptr, d_blocks_ptr)


def make_filesystem(path: str | os.PathLike, inodes: int, blocks: int) -> Superblock:
    """Write a superblock and root directory into an existing image file."""
    with open(path, "r+b") as image:
        size = os.fstat(image.fileno()).st_size
        sb = setup_superblock(inodes, blocks, size)
        image.write(sb.pack())

        now = int(time.time())
        root = Inode(
            num=0,
            mode=stat.S_IFDIR | stat.S_IRWXU,
            uid=os.getuid(),
            gid=os.getgid(),
            size=0,
            nlinks=1,
            atim=now,
            mtim=now,
            ctim=now,
            color=Color.NONE,
        )

        image.seek(sb.i_bitmap_ptr)
        image.write(struct.pack("<I", 1))
        image.seek(sb.i_blocks_ptr)
        image.write(root.pack())
    return sb


def _atoi(text: str) -> int:
    match = re.match(r"\s*([+-]?\d+)", text)
    return int(match.group(1)) if match else 0


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        opts, _ = getopt.getopt(args, "d:i:b:")
    except getopt.GetoptError:
        print(USAGE)
        return 1

    diskimg = None
    inodes = blocks = 0
    for opt, value in opts:
        if opt == "-d":
            diskimg = value
        elif opt == "-i":
            inodes = _atoi(value)
        elif opt == "-b":
            blocks = _atoi(value)

    if diskimg is None:
        print(USAGE)
        return 1

    try:
        sb = make_filesystem(diskimg, inodes, blocks)
    except OSError as exc:
        print(f"open failed create metadata: {exc}", file=sys.stderr)
        return 1
    except ValueError:
        print("too many blocks requested, failed to write superblock")
        return 1

    print(f"created with {sb.num_inodes} inodes, {sb.num_data_blocks} blocks, "
          f"blocks start at {sb.i_blocks_ptr}")
    return 0


if __name__ == "__main__":
    sys.exit(main())