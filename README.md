# wfsimg

`wfsimg` keeps a small filesystem inside one disk-image file. The image is
laid out as a superblock, an inode bitmap, a data-block bitmap, an inode
table and then the data blocks. Blocks are 512 bytes. Each inode has six
direct block pointers and one indirect block. Any file or directory can also
carry a colour tag, which is exposed as the extended attribute `user.color`.

## Creating an image

The image file must already exist and be big enough for the layout you ask
for. Inode and block counts are rounded up to multiples of 32.

```sh
truncate -s 1M disk.img
wfs-mkfs -d disk.img -i 32 -b 200
```

`wfs-mkfs` takes `-d` (image path), `-i` (number of inodes) and `-b`
(number of data blocks). It exits with status 1 and a message when `-d` is
missing, an option is unknown, the file cannot be opened, or the requested
layout does not fit in the file.

From Python, `make_filesystem` does the same and returns the `Superblock`
it wrote; it raises `ValueError` when the layout does not fit:

```python
from wfsimg.mkfs import make_filesystem

sb = make_filesystem("disk.img", inodes=32, blocks=200)
```

`setup_superblock(inodes, blocks, size)` computes the layout alone, without
touching a file, and `roundup(num, factor)` is the rounding it uses.

## Working with an image

```python
from wfsimg.filesystem import FileSystem

with FileSystem.open("disk.img") as fs:
    fs.mkdir("/docs", 0o755)
    fs.mknod("/docs/note.txt", 0o644)
    fs.write("/docs/note.txt", b"Hello", 0)
    print(fs.read("/docs/note.txt", 5, 0))        # b'Hello'
    print(fs.readdir("/docs"))                     # ['.', '..', 'note.txt']

    fs.setxattr("/docs/note.txt", "user.color", "blue")
    print(fs.getxattr("/docs/note.txt", "user.color"))  # 'blue'

    st = fs.getattr("/docs/note.txt")
    print(st.size, st.nlink, st.mtime)

    usage = fs.statfs()
    print(usage.blocks, usage.bfree, usage.files, usage.ffree)

    fs.unlink("/docs/note.txt")
```

`FileSystem.open` maps the image file into memory, so every change is made
in the file directly; `close()` (or leaving the `with` block) flushes it.
`FileSystem(image)` also accepts any writable buffer holding a formatted
image, such as a `bytearray`.

Paths are absolute and start with `/`. Entry names are stored in at most
28 bytes. `lookup(path)` returns the `Inode` for a path. `getattr` returns a
`FileStat` and `statfs` a `FsStat`. `inode_count()` and
`data_block_count()` count the allocated inodes and data blocks.

Reading a file updates its access time when bytes were read; writing
updates its modification and change times; listing a directory updates its
access time; adding or removing an entry updates the directory's
modification and change times; setting or removing the colour updates the
change time.

Failures are raised as `OSError` carrying the matching `errno` value:
`ENOENT` (as `FileNotFoundError`) when a path does not exist, `ENOSPC` when
the image has run out of inodes or data blocks, `EFBIG` for an offset past
what the direct and indirect blocks can address, `EINVAL` for an unknown
colour name, and `EOPNOTSUPP` for any attribute other than `user.color`.

`rmdir` removes the entry and frees the directory's inode and blocks
without checking that the directory is empty, and it never raises.

`readdir` can be given the name of the calling program. When that name is
`ls`, entries that carry a colour tag are returned wrapped in ANSI colour
codes, so a terminal shows them in their colour. Path lookups strip those
codes again, so a coloured name can be handed back to the filesystem
unchanged.

## Colours

The colours are `none`, `red`, `green`, `blue`, `yellow`, `magenta`, `cyan`,
`white`, `black`, `orange`, `purple` and `gray`. Names are matched without
regard to case. In `wfsimg.colors`, `parse_color_name` turns a name into a
`Color` (raising `ValueError` for an unknown one), `color_name` and
`color_ansi` turn a code into its name or terminal escape (unknown codes
read as `none`), and `strip_ansi_codes` removes colour escapes from a path.

## Inspecting the on-disk structures

`wfsimg.layout` has `Superblock`, `Inode` and `Dentry`. Each one has
`pack()` and `from_bytes()` for writing and reading the raw records, and
`Color` is the colour palette as an enum.

## What it does not do

The package does not mount an image into the operating system's directory
tree; there is no mount command. The filesystem is used only through the
methods of `FileSystem` from Python. There is no rename, truncate, link or
symbolic-link support.