"""
DirectoryLister - Offset-paginated directory enumeration.

Every call rebuilds the listing from the host, so offsets are positions
in the freshly built list. If the directory changes between paginated
calls, entries may be skipped or repeated.
"""

import logging
import os
from dataclasses import dataclass
from typing import List

import pyfuse3

from attribute_translator import EntryKind, stat_path
from inode_table import InodeTable, InodeT, ROOT_INODE


log = logging.getLogger(__name__)


@dataclass
class DirectoryEntry:
    """One emitted directory entry."""
    inode: InodeT
    kind: EntryKind
    name: str
    offset: int
    attr: pyfuse3.EntryAttributes


def resume_index(offset: int) -> int:
    """
    Translate a continuation offset into the first index to emit.

    Offset 0 means "start of listing". Any other offset is the position of
    the last consumed entry, so emission resumes right after it.
    """
    if offset <= 0:
        return 0
    return offset + 1


class DirectoryLister:
    """Lists directories and backfills the inode table with each child."""

    def __init__(self, inodes: InodeTable):
        self.inodes = inodes

    def build(self, inode: InodeT) -> List[DirectoryEntry]:
        """
        Enumerate ``inode`` from scratch, recording every child.

        Raises:
            InodeNotFoundError: If ``inode`` was never observed
            OSError: If the host enumeration fails; nothing is emitted
        """
        path = self.inodes.resolve(inode)
        dir_attr = stat_path(path, inode=inode)
        names = os.listdir(path)

        children = []
        for name in names:
            child_path = os.path.join(path, name)
            try:
                attr = stat_path(child_path, follow_symlinks=False)
            except FileNotFoundError:
                log.debug("Entry vanished during listing: %s", child_path)
                continue
            if attr.st_ino == ROOT_INODE:
                log.warning("Hiding %s: host inode collides with the root handle", child_path)
                continue
            children.append((name, child_path, attr))

        with self.inodes.guard():
            for _, child_path, attr in children:
                self.inodes.record(attr.st_ino, child_path)

        entries = [
            DirectoryEntry(inode, EntryKind.DIRECTORY, ".", 0, dir_attr),
            DirectoryEntry(inode, EntryKind.DIRECTORY, "..", 1, dir_attr),
        ]
        for name, _, attr in children:
            entries.append(DirectoryEntry(
                inode=attr.st_ino,
                kind=EntryKind.from_mode(attr.st_mode),
                name=name,
                offset=len(entries),
                attr=attr,
            ))
        return entries

    def list(self, inode: InodeT, offset: int) -> List[DirectoryEntry]:
        """Return the entries that follow continuation ``offset``."""
        return self.build(inode)[resume_index(offset):]
