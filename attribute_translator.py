"""
Attribute translation from host ``os.stat_result`` to pyfuse3 records.

Only two kinds are reported: directories, and everything else as regular
files. Timeouts are left at zero here; the dispatcher attaches its TTL.
"""

import os
import stat
from enum import Enum
from typing import Optional

import pyfuse3


class EntryKind(Enum):
    """Kinds of entry the adapter exposes."""
    DIRECTORY = "directory"
    REGULAR_FILE = "regular_file"

    @classmethod
    def from_mode(cls, mode: int) -> "EntryKind":
        if stat.S_ISDIR(mode):
            return cls.DIRECTORY
        return cls.REGULAR_FILE

    @property
    def type_bits(self) -> int:
        return stat.S_IFDIR if self is EntryKind.DIRECTORY else stat.S_IFREG


def make_entry_attributes(
    st: os.stat_result,
    inode: Optional[int] = None,
) -> pyfuse3.EntryAttributes:
    """Build EntryAttributes from a stat result."""
    kind = EntryKind.from_mode(st.st_mode)

    entry = pyfuse3.EntryAttributes()
    entry.st_ino = st.st_ino if inode is None else inode
    entry.generation = 0
    entry.st_mode = kind.type_bits | stat.S_IMODE(st.st_mode)
    entry.st_nlink = st.st_nlink
    entry.st_uid = st.st_uid
    entry.st_gid = st.st_gid
    entry.st_rdev = st.st_rdev
    entry.st_size = st.st_size
    entry.st_blksize = st.st_blksize
    entry.st_blocks = st.st_blocks
    entry.st_atime_ns = st.st_atime_ns
    entry.st_mtime_ns = st.st_mtime_ns
    entry.st_ctime_ns = st.st_ctime_ns
    # Creation time is not available from the host
    entry.st_birthtime_ns = 0
    return entry


def stat_path(
    path: str,
    inode: Optional[int] = None,
    follow_symlinks: bool = True,
) -> pyfuse3.EntryAttributes:
    """
    Query the host once for ``path`` and translate the result.

    Args:
        path: Absolute host path
        inode: Handle to report instead of the host inode number
        follow_symlinks: False for the listing path, which must not
            dereference children

    Raises:
        OSError: Propagated unchanged from the host
    """
    st = os.stat(path, follow_symlinks=follow_symlinks)
    return make_entry_attributes(st, inode)
