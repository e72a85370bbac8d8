"""
InodeTable - Mapping from FUSE inode handles to real paths.

Handles are the host filesystem's own inode numbers, with one exception:
handle 1 always resolves to the source root. Entries are added lazily by
lookup and directory listing and are never evicted, so a handle the kernel
still holds can always be resolved again.
"""

import logging
import os
import threading
from typing import Dict, Iterator
from contextlib import contextmanager

import pyfuse3


InodeT = int

ROOT_INODE = pyfuse3.ROOT_INODE

log = logging.getLogger(__name__)


class InodeNotFoundError(LookupError):
    """Raised when a handle has never been observed."""

    def __init__(self, inode: InodeT):
        super().__init__(f"Unknown inode: {inode}")
        self.inode = inode


class InodeTable:
    """
    Grow-only inode -> path map guarded by a single lock.

    Capacity is unbounded: one entry per distinct host inode observed
    during the lifetime of the mount. Two hard-linked paths share a host
    inode and so share a handle; the last observed path wins.
    """

    def __init__(self, source_root: str):
        self.source_root = os.path.abspath(source_root)
        self._paths: Dict[InodeT, str] = {ROOT_INODE: self.source_root}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)

    def __contains__(self, inode: InodeT) -> bool:
        with self._lock:
            return inode in self._paths

    @contextmanager
    def guard(self) -> Iterator["InodeTable"]:
        """Hold the table lock across a resolve-then-record sequence."""
        with self._lock:
            yield self

    def resolve(self, inode: InodeT) -> str:
        with self._lock:
            try:
                return self._paths[inode]
            except KeyError:
                raise InodeNotFoundError(inode) from None

    def resolve_child(self, parent_inode: InodeT, name: str) -> str:
        return os.path.join(self.resolve(parent_inode), name)

    def record(self, inode: InodeT, path: str) -> None:
        """
        Insert or overwrite the mapping for ``inode``.

        The root handle is pinned to the source root; attempts to point it
        anywhere else are ignored.
        """
        with self._lock:
            if inode == ROOT_INODE:
                if path != self.source_root:
                    log.warning("Refusing to remap root inode to %s", path)
                return
            previous = self._paths.get(inode)
            if previous is not None and previous != path:
                log.debug("Inode %d moved from %s to %s", inode, previous, path)
            self._paths[inode] = path

    def forget(self, inode: InodeT) -> None:
        """Kernel released its references; the mapping is kept."""
