import errno
import os
import stat

import pytest

from wfsimg.filesystem import FileSystem
from wfsimg.layout import BLOCK_SIZE, D_BLOCK
from wfsimg.mkfs import make_filesystem


def _mount(tmp_path, inodes=96, blocks=64):
    path = tmp_path / "disk.img"
    path.write_bytes(bytes((inodes + blocks) * BLOCK_SIZE + 8192))
    make_filesystem(path, inodes, blocks)
    return FileSystem.open(path)


@pytest.fixture
def fs(tmp_path):
    with _mount(tmp_path) as mounted:
        yield mounted


def _counts(fs):
    return fs.inode_count(), fs.data_block_count()


def test_create_file_in_root(fs):
    fs.mknod("/file0")
    assert _counts(fs) == (2, 1)


def test_nested_dirs(fs):
    fs.mkdir("/data2")
    fs.mkdir("/data2/data3")
    assert _counts(fs) == (3, 2)
    assert stat.S_ISDIR(fs.getattr("/data2/data3").mode)


def test_file_in_subdir(fs):
    fs.mkdir("/data4")
    fs.mknod("/data4/data.txt")
    assert _counts(fs) == (3, 2)


def test_file_via_parent(fs):
    fs.mkdir("/data5")
    fs.mknod("/data9.txt")
    assert _counts(fs) == (3, 1)


def test_remove_file(fs):
    fs.mknod("/file0")
    fs.unlink("/file0")
    with pytest.raises(FileNotFoundError):
        fs.getattr("/file0")
    assert fs.inode_count() == 1


def test_remove_file_in_subdir(fs):
    fs.mkdir("/data4")
    fs.mknod("/data4/data.txt")
    fs.unlink("/data4/data.txt")
    assert fs.readdir("/data4") == [".", ".."]


def test_write_read_small(fs):
    fs.mknod("/data11.txt")
    assert fs.write("/data11.txt", b"Hello", 0) == 5
    assert fs.read("/data11.txt", 5, 0) == b"Hello"
    assert _counts(fs) == (2, 2)


def test_large_file_indirect(fs):
    data = os.urandom((D_BLOCK + 3) * BLOCK_SIZE)
    fs.mknod("/large.txt")
    fs.write("/large.txt", data, 0)
    assert fs.read("/large.txt", len(data), 0) == data
    assert _counts(fs) == (2, 1 + D_BLOCK + 3 + 1)


def test_read_at_offset(fs):
    data = os.urandom(4 * BLOCK_SIZE)
    fs.mknod("/file.txt")
    fs.write("/file.txt", data, 0)
    off = BLOCK_SIZE // 2
    assert fs.read("/file.txt", BLOCK_SIZE, off) == data[off:off + BLOCK_SIZE]
    assert _counts(fs) == (2, 5)


def test_overwrite_middle(fs):
    data = bytearray(os.urandom(4 * BLOCK_SIZE))
    fs.mknod("/file.txt")
    fs.write("/file.txt", bytes(data), 0)
    patch = os.urandom(BLOCK_SIZE)
    off = BLOCK_SIZE // 2
    fs.write("/file.txt", patch, off)
    data[off:off + BLOCK_SIZE] = patch
    assert fs.read("/file.txt", len(data), 0) == bytes(data)
    assert fs.getattr("/file.txt").size == len(data)
    assert _counts(fs) == (2, 5)


def test_two_large_files_overlapping_writes(fs):
    size = (D_BLOCK + 3) * BLOCK_SIZE
    bufs = [os.urandom(size) + os.urandom(size) for _ in range(2)]
    for name in ("/large1.txt", "/large2.txt"):
        fs.mknod(name)
    for i in range(0, size, BLOCK_SIZE):
        fs.write("/large1.txt", bufs[0][i:i + size], i)
        fs.write("/large2.txt", bufs[1][i:i + size], i)
    assert fs.read("/large1.txt", size, 0) == bufs[0][:size]
    assert fs.read("/large2.txt", size, 0) == bufs[1][:size]
    assert _counts(fs) == (3, 37)


def test_many_files(fs):
    names = [f"file{i}" for i in range(64)]
    for n in names:
        fs.mknod("/" + n)
    assert sorted(fs.readdir("/")[2:]) == sorted(names)
    assert _counts(fs) == (65, 4)


def test_out_of_inodes(fs):
    names = [f"file{i}" for i in range(95)]
    for n in names:
        fs.mknod("/" + n)
    with pytest.raises(OSError) as info:
        fs.mknod("/95")
    assert info.value.errno == errno.ENOSPC
    assert sorted(fs.readdir("/")[2:]) == sorted(names)
    assert _counts(fs) == (96, 6)


def test_out_of_data_blocks(fs):
    data = os.urandom(62 * BLOCK_SIZE)
    fs.mknod("/large.txt")
    fs.write("/large.txt", data, 0)
    assert fs.read("/large.txt", len(data), 0) == data
    assert _counts(fs) == (2, 64)
    with pytest.raises(OSError) as info:
        fs.write("/large.txt", b"a", len(data))
    assert info.value.errno == errno.ENOSPC


def test_many_large_files(tmp_path):
    with _mount(tmp_path, inodes=32, blocks=1024) as fs:
        names = [f"file{i}" for i in range(31)]
        for n in names:
            fs.mknod("/" + n)
            fs.write("/" + n, os.urandom(31 * BLOCK_SIZE), 0)
        assert sorted(fs.readdir("/")[2:]) == sorted(names)
        assert _counts(fs) == (32, 994)


def test_fill_and_empty_subdir(tmp_path):
    with _mount(tmp_path, inodes=96, blocks=96) as fs:
        fs.mknod("/dummy")
        fs.mkdir("/subdir")
        names = [f"file{i}" for i in range(64)]
        for n in names:
            fs.mknod("/subdir/" + n)
            fs.write("/subdir/" + n, os.urandom(BLOCK_SIZE), 0)
        assert sorted(fs.readdir("/subdir")[2:]) == sorted(names)
        for n in names:
            fs.unlink("/subdir/" + n)
        assert fs.readdir("/subdir") == [".", ".."]
        fs.rmdir("/subdir")
        assert _counts(fs) == (2, 1)


def test_statfs_after_small_files(fs):
    s0 = fs.statfs()
    for i in range(17):
        fs.mknod(f"/s18_{i:02d}")
        fs.write(f"/s18_{i:02d}", b"x", 0)
    s1 = fs.statfs()
    assert s0.bsize == BLOCK_SIZE and s0.frsize == BLOCK_SIZE
    assert (s1.blocks, s1.files) == (s0.blocks, s0.files)
    assert s0.ffree - s1.ffree == 17
    assert s0.bfree - s1.bfree > 17


def test_creation_times_and_parent_bump(fs):
    fs.mknod("/t19_file")
    fs.mkdir("/t19_dir")
    root_before = fs.getattr("/")
    for p in ("/t19_file", "/t19_dir"):
        st = fs.getattr(p)
        assert st.atime == st.mtime == st.ctime
    fs.mknod("/t19_file2")
    root_after = fs.getattr("/")
    assert root_after.mtime >= root_before.mtime
    assert root_after.ctime >= root_before.ctime


def test_read_keeps_mtime_ctime(fs):
    fs.mknod("/t20_file")
    fs.write("/t20_file", b"ABC", 0)
    before = fs.getattr("/t20_file")
    assert fs.read("/t20_file", 3, 0) == b"ABC"
    after = fs.getattr("/t20_file")
    assert after.atime >= before.atime
    assert (after.mtime, after.ctime) == (before.mtime, before.ctime)


def test_write_keeps_atime(fs):
    fs.mknod("/t21_file")
    fs.write("/t21_file", b"AB", 0)
    before = fs.getattr("/t21_file")
    fs.write("/t21_file", b"CD", 2)
    after = fs.getattr("/t21_file")
    assert after.mtime >= before.mtime and after.ctime >= before.ctime
    assert after.atime == before.atime
    assert fs.read("/t21_file", 10, 0) == b"ABCD"


def test_color_xattr_roundtrip(fs):
    fs.mknod("/t22_file")
    before = fs.getattr("/t22_file")
    fs.setxattr("/t22_file", "user.color", "blue")
    assert fs.getxattr("/t22_file", "user.color") == "blue"
    after1 = fs.getattr("/t22_file")
    assert after1.ctime >= before.ctime
    fs.removexattr("/t22_file", "user.color")
    assert fs.getxattr("/t22_file", "user.color") == "none"
    assert fs.getattr("/t22_file").ctime >= after1.ctime


def test_plain_listing_with_color(fs):
    fs.mknod("/t23_a")
    fs.mknod("/t23_b")
    fs.setxattr("/t23_b", "user.color", b"red")
    assert sorted(fs.readdir("/")[2:]) == ["t23_a", "t23_b"]


def test_ls_listing_is_colored(fs):
    fs.mknod("/t24_a")
    fs.mknod("/t24_b")
    fs.setxattr("/t24_b", "user.color", "blue")
    names = fs.readdir("/", caller="ls")
    assert "t24_a" in names
    assert "\033[34mt24_b\033[0m" in names
    assert fs.getattr("\033[34m/t24_b\033[0m").size == 0


def test_statfs_lifecycle(fs):
    s0 = fs.statfs()
    fs.mknod("/t26")
    fs.write("/t26", b"A" * 512, 0)
    s1 = fs.statfs()
    assert s0.ffree - s1.ffree >= 1 and s0.bfree - s1.bfree >= 1
    assert fs.read("/t26", 8, 0) == b"A" * 8
    s2 = fs.statfs()
    assert (s2.ffree, s2.bfree) == (s1.ffree, s1.bfree)
    fs.write("/t26", b"A" * 512, 512)
    s3 = fs.statfs()
    assert s3.ffree == s2.ffree and s3.bfree < s2.bfree
    fs.readdir("/")
    s4 = fs.statfs()
    assert (s4.ffree, s4.bfree) == (s3.ffree, s3.bfree)
    fs.unlink("/t26")
    s5 = fs.statfs()
    assert s5.ffree > s4.ffree and s5.bfree > s4.bfree


def test_dir_times(fs):
    fs.mkdir("/t27_dir")
    p0 = fs.getattr("/t27_dir")
    fs.readdir("/t27_dir")
    p1 = fs.getattr("/t27_dir")
    assert p1.atime >= p0.atime
    assert (p1.mtime, p1.ctime) == (p0.mtime, p0.ctime)
    fs.mknod("/t27_dir/child")
    p2 = fs.getattr("/t27_dir")
    assert p2.mtime >= p1.mtime and p2.ctime >= p1.ctime
    fs.unlink("/t27_dir/child")
    p3 = fs.getattr("/t27_dir")
    assert p3.mtime >= p2.mtime and p3.ctime >= p2.ctime


def test_recolor_keeps_plain_name(fs):
    fs.mknod("/t28_target")
    fs.setxattr("/t28_target", "user.color", "blue")
    fs.setxattr("/t28_target", "user.color", "red")
    assert fs.getxattr("/t28_target", "user.color") == "red"
    assert fs.readdir("/")[2:] == ["t28_target"]


def test_xattr_errors(fs):
    fs.mknod("/f")
    with pytest.raises(OSError) as info:
        fs.getxattr("/f", "user.other")
    assert info.value.errno == errno.EOPNOTSUPP
    with pytest.raises(OSError) as info:
        fs.setxattr("/f", "user.color", "pink")
    assert info.value.errno == errno.EINVAL
    with pytest.raises(FileNotFoundError):
        fs.getxattr("/missing", "user.color")


def test_persists_after_reopen(tmp_path):
    fs = _mount(tmp_path)
    fs.mknod("/keep")
    fs.write("/keep", b"data", 0)
    fs.close()
    with FileSystem.open(tmp_path / "disk.img") as again:
        assert again.read("/keep", 4, 0) == b"data"
        assert again.inode_count() == 2