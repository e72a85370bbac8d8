"""
DecoFS - A FUSE view of a directory that can be drained but never grown.

This module implements the filesystem class that:
1. Passes reads, lookups and listings through to the source directory
2. Passes deletions (unlink, rmdir) through unless mounted read-only
3. Rejects every operation that would write data or change structure
4. Records deletions and denied requests via AuditLogger

File contents are never cached or transformed. The only state shared
between requests is the InodeTable.
"""

import errno
import logging
import os
from enum import Enum
from typing import Optional, Sequence, Tuple

import pyfuse3
from pyfuse3 import FUSEError

from attribute_translator import stat_path
from audit_logger import AuditLogger, EventType
from directory_lister import DirectoryLister
from inode_table import InodeTable, InodeNotFoundError, InodeT, ROOT_INODE


FileHandleT = int

# Reply for every denied operation
DENIED_ERRNO = errno.EPERM

DOT_NAMES = frozenset({'.', '..'})

log = logging.getLogger(__name__)


class MountMode(Enum):
    """What the mount allows beyond reading."""
    READ_DELETE = "read-delete"
    READ_ONLY = "read-only"


class Policy(Enum):
    PASS = "pass"
    DENY = "deny"


class Operation(Enum):
    """Every request the dispatcher answers."""
    LOOKUP = "lookup"
    GETATTR = "getattr"
    READLINK = "readlink"
    UNLINK = "unlink"
    RMDIR = "rmdir"
    OPEN = "open"
    OPENDIR = "opendir"
    READ = "read"
    READDIR = "readdir"
    FLUSH = "flush"
    RELEASE = "release"
    RELEASEDIR = "releasedir"
    FSYNC = "fsync"
    FSYNCDIR = "fsyncdir"
    ACCESS = "access"
    STATFS = "statfs"
    LISTXATTR = "listxattr"
    GETXATTR = "getxattr"
    FORGET = "forget"

    SETATTR = "setattr"
    MKNOD = "mknod"
    MKDIR = "mkdir"
    SYMLINK = "symlink"
    RENAME = "rename"
    LINK = "link"
    WRITE = "write"
    SETXATTR = "setxattr"
    REMOVEXATTR = "removexattr"
    CREATE = "create"
    SETLK = "setlk"
    GETLK = "getlk"
    BMAP = "bmap"


DELETE_OPERATIONS = frozenset({Operation.UNLINK, Operation.RMDIR})

DENIED_OPERATIONS = frozenset({
    Operation.SETATTR,
    Operation.MKNOD,
    Operation.MKDIR,
    Operation.SYMLINK,
    Operation.RENAME,
    Operation.LINK,
    Operation.WRITE,
    Operation.SETXATTR,
    Operation.REMOVEXATTR,
    Operation.CREATE,
    Operation.SETLK,
    Operation.GETLK,
    Operation.BMAP,
})

POLICY_TABLE = {
    mode: {
        op: (
            Policy.DENY
            if op in DENIED_OPERATIONS
            or (mode is MountMode.READ_ONLY and op in DELETE_OPERATIONS)
            else Policy.PASS
        )
        for op in Operation
    }
    for mode in MountMode
}


def policy_for(operation: Operation, mode: MountMode) -> Policy:
    """Look up the policy for ``operation``; raises KeyError for non-members."""
    return POLICY_TABLE[mode][operation]


class DecoFSConfig:
    """Configuration for DecoFS behavior."""

    def __init__(
        self,
        mode: MountMode = MountMode.READ_DELETE,
        attr_timeout: float = 1.0,     # Seconds the kernel may cache replies

        # Mount options
        fsname: str = "decofs",
        allow_other: bool = False,

        # Logging
        log_file: Optional[str] = None,
        console_logging: bool = True,
        debug: bool = False,
    ):
        self.mode = mode
        self.attr_timeout = attr_timeout
        self.fsname = fsname
        self.allow_other = allow_other
        self.log_file = log_file
        self.console_logging = console_logging
        self.debug = debug

    def fuse_options(self) -> set:
        """Mount options for pyfuse3.init. Write denial never relies on 'ro'."""
        options = set(pyfuse3.default_options)
        options.add(f'fsname={self.fsname}')
        if self.allow_other:
            options.add('allow_other')
        if self.debug:
            options.add('debug')
        return options


class DecoFS(pyfuse3.Operations):
    """
    Read-and-delete passthrough over an existing directory.

    Usage:
        fs = DecoFS(source_dir="/srv/old-volume")
        pyfuse3.init(fs, mountpoint, fs.config.fuse_options())
        trio.run(pyfuse3.main)

    Open files and directories get the inode handle back as their file
    handle, because pyfuse3 only passes the file handle to read and
    readdir. No per-handle state is kept.
    """

    ROOT_INODE = ROOT_INODE

    def __init__(
        self,
        source_dir: str,
        config: Optional[DecoFSConfig] = None,
        audit: Optional[AuditLogger] = None,
    ):
        """
        Args:
            source_dir: The directory to expose
            config: Configuration options
            audit: Audit logger (built from config when omitted)
        """
        super().__init__()

        self.source_dir = os.path.abspath(source_dir)
        self.config = config or DecoFSConfig()

        if not os.path.isdir(self.source_dir):
            raise ValueError(f"Source directory does not exist: {self.source_dir}")

        self.inodes = InodeTable(self.source_dir)
        self.lister = DirectoryLister(self.inodes)

        self.audit = audit or AuditLogger(
            log_file=self.config.log_file,
            console_output=self.config.console_logging,
        )

        self.audit.log_system_event(
            EventType.FILESYSTEM_MOUNTED,
            f"DecoFS serving {self.source_dir}",
            {"source_dir": self.source_dir, "mode": self.config.mode.value},
        )

    # ==================== HELPERS ====================

    def _resolve(self, inode: InodeT) -> str:
        try:
            return self.inodes.resolve(inode)
        except InodeNotFoundError:
            raise FUSEError(errno.ENOENT) from None

    def _resolve_child(self, parent_inode: InodeT, name: bytes) -> str:
        name_str = os.fsdecode(name)
        if name_str in DOT_NAMES:
            raise FUSEError(errno.EINVAL)
        try:
            return self.inodes.resolve_child(parent_inode, name_str)
        except InodeNotFoundError:
            raise FUSEError(errno.ENOENT) from None

    def _with_ttl(self, attr: pyfuse3.EntryAttributes) -> pyfuse3.EntryAttributes:
        attr.entry_timeout = self.config.attr_timeout
        attr.attr_timeout = self.config.attr_timeout
        return attr

    def _check(
        self,
        operation: Operation,
        ctx: Optional[pyfuse3.RequestContext] = None,
        inode: Optional[InodeT] = None,
        name: Optional[bytes] = None,
    ) -> None:
        """Raise the fixed permission error if policy denies ``operation``."""
        if policy_for(operation, self.config.mode) is Policy.PASS:
            return
        self.audit.log_denied_operation(
            operation=operation.value,
            inode=inode,
            name=os.fsdecode(name) if name is not None else None,
            pid=getattr(ctx, 'pid', None),
            uid=getattr(ctx, 'uid', None),
        )
        raise FUSEError(DENIED_ERRNO)

    # ==================== LOOKUP & ATTRIBUTES ====================

    async def lookup(
        self,
        parent_inode: InodeT,
        name: bytes,
        ctx: pyfuse3.RequestContext,
    ) -> pyfuse3.EntryAttributes:
        """
        Look up a directory entry by name and remember its inode.

        The entry itself is stat'ed, never a symlink target, so the handle
        matches the one a directory listing reports for the same name.
        """
        if os.fsdecode(name) in DOT_NAMES:
            return self._lookup_dot(parent_inode, os.fsdecode(name))

        path = self._resolve_child(parent_inode, name)

        try:
            attr = stat_path(path, follow_symlinks=False)
        except OSError as e:
            raise FUSEError(e.errno) from None

        if attr.st_ino == ROOT_INODE:
            log.warning("Hiding %s: host inode collides with the root handle", path)
            raise FUSEError(errno.ENOENT)

        self.inodes.record(attr.st_ino, path)
        log.debug("lookup %s -> inode %d", path, attr.st_ino)
        return self._with_ttl(attr)

    def _lookup_dot(self, parent_inode: InodeT, name: str) -> pyfuse3.EntryAttributes:
        """Resolve '.' and '..' without ever leaving the source root."""
        parent_path = self._resolve(parent_inode)

        if name == '.' or parent_path == self.source_dir:
            path, inode = parent_path, parent_inode
        else:
            path = os.path.dirname(parent_path)
            inode = ROOT_INODE if path == self.source_dir else None

        try:
            attr = stat_path(path, inode=inode, follow_symlinks=(path == self.source_dir))
        except OSError as e:
            raise FUSEError(e.errno) from None

        if inode is None:
            self.inodes.record(attr.st_ino, path)
        return self._with_ttl(attr)

    async def getattr(
        self,
        inode: InodeT,
        ctx: pyfuse3.RequestContext,
    ) -> pyfuse3.EntryAttributes:
        path = self._resolve(inode)

        try:
            attr = stat_path(path, inode=inode, follow_symlinks=(inode == ROOT_INODE))
        except OSError as e:
            raise FUSEError(e.errno) from None

        return self._with_ttl(attr)

    async def readlink(
        self,
        inode: InodeT,
        ctx: pyfuse3.RequestContext,
    ) -> bytes:
        path = self._resolve(inode)

        try:
            return os.fsencode(os.readlink(path))
        except OSError as e:
            raise FUSEError(e.errno) from None

    async def access(
        self,
        inode: InodeT,
        mode: int,
        ctx: pyfuse3.RequestContext,
    ) -> bool:
        """Permission checks are left to the kernel."""
        return True

    async def forget(
        self,
        inode_list: Sequence[Tuple[InodeT, int]],
    ) -> None:
        """Kernel dropped its references; mappings are kept for later requests."""
        for inode, _ in inode_list:
            self.inodes.forget(inode)

    async def statfs(
        self,
        ctx: pyfuse3.RequestContext,
    ) -> pyfuse3.StatvfsData:
        """Get statistics of the filesystem holding the source directory."""
        try:
            st = os.statvfs(self.source_dir)
        except OSError as e:
            raise FUSEError(e.errno) from None

        data = pyfuse3.StatvfsData()
        data.f_bsize = st.f_bsize
        data.f_frsize = st.f_frsize
        data.f_blocks = st.f_blocks
        data.f_bfree = st.f_bfree
        data.f_bavail = st.f_bavail
        data.f_files = st.f_files
        data.f_ffree = st.f_ffree
        data.f_favail = st.f_favail
        data.f_namemax = st.f_namemax
        return data

    # ==================== DELETION ====================

    async def unlink(
        self,
        parent_inode: InodeT,
        name: bytes,
        ctx: pyfuse3.RequestContext,
    ) -> None:
        """Delete a file from the source directory."""
        self._check(Operation.UNLINK, ctx, parent_inode, name)
        path = self._resolve_child(parent_inode, name)

        # The size is only for the audit record. If the entry is replaced
        # between these two calls, the audited size belongs to the old one.
        try:
            st = os.lstat(path)
            os.unlink(path)
        except OSError as e:
            raise FUSEError(e.errno) from None

        self.audit.log_deletion(
            operation=Operation.UNLINK.value,
            path=path,
            inode=st.st_ino,
            size_bytes=st.st_size,
            pid=getattr(ctx, 'pid', None),
            uid=getattr(ctx, 'uid', None),
        )

    async def rmdir(
        self,
        parent_inode: InodeT,
        name: bytes,
        ctx: pyfuse3.RequestContext,
    ) -> None:
        """Remove an empty directory from the source directory."""
        self._check(Operation.RMDIR, ctx, parent_inode, name)
        path = self._resolve_child(parent_inode, name)

        try:
            os.rmdir(path)
        except OSError as e:
            raise FUSEError(e.errno) from None

        self.audit.log_deletion(
            operation=Operation.RMDIR.value,
            path=path,
            pid=getattr(ctx, 'pid', None),
            uid=getattr(ctx, 'uid', None),
        )

    # ==================== FILE I/O ====================

    async def open(
        self,
        inode: InodeT,
        flags: int,
        ctx: pyfuse3.RequestContext,
    ) -> pyfuse3.FileInfo:
        """Check the file still exists; the handle is the inode itself."""
        path = self._resolve(inode)

        try:
            os.stat(path)
        except OSError as e:
            raise FUSEError(e.errno) from None

        return pyfuse3.FileInfo(fh=inode)

    async def read(
        self,
        fh: FileHandleT,
        offset: int,
        size: int,
    ) -> bytes:
        """Read up to ``size`` bytes; a short read at EOF is fine."""
        path = self._resolve(fh)

        try:
            with open(path, 'rb') as f:
                f.seek(offset)
                return f.read(size)
        except OSError as e:
            raise FUSEError(e.errno) from None

    async def flush(self, fh: FileHandleT) -> None:
        pass

    async def release(self, fh: FileHandleT) -> None:
        pass

    async def fsync(self, fh: FileHandleT, datasync: bool) -> None:
        pass

    # ==================== DIRECTORY ====================

    async def opendir(
        self,
        inode: InodeT,
        ctx: pyfuse3.RequestContext,
    ) -> FileHandleT:
        path = self._resolve(inode)

        try:
            os.stat(path)
        except OSError as e:
            raise FUSEError(e.errno) from None

        return inode

    async def readdir(
        self,
        fh: FileHandleT,
        start_id: int,
        token: pyfuse3.ReaddirToken,
    ) -> None:
        """
        Emit directory entries following ``start_id``.

        The whole listing is rebuilt on every call and each entry's offset
        is its position in that list, '.' and '..' first.
        """
        try:
            entries = self.lister.list(fh, start_id)
        except InodeNotFoundError:
            raise FUSEError(errno.ENOENT) from None
        except OSError as e:
            raise FUSEError(e.errno) from None

        for entry in entries:
            if not pyfuse3.readdir_reply(
                token,
                os.fsencode(entry.name),
                self._with_ttl(entry.attr),
                entry.offset,
            ):
                break

    async def releasedir(self, fh: FileHandleT) -> None:
        pass

    async def fsyncdir(self, fh: FileHandleT, datasync: bool) -> None:
        pass

    # ==================== EXTENDED ATTRIBUTES ====================

    async def listxattr(
        self,
        inode: InodeT,
        ctx: pyfuse3.RequestContext,
    ) -> Sequence[bytes]:
        """Extended attributes are not exposed, so the list is always empty."""
        self._resolve(inode)
        return []

    async def getxattr(
        self,
        inode: InodeT,
        name: bytes,
        ctx: pyfuse3.RequestContext,
    ) -> bytes:
        self._resolve(inode)
        raise FUSEError(errno.ENOTSUP)

    # ==================== DENIED OPERATIONS ====================
    # None of these resolve inodes or touch the source directory.

    async def setattr(
        self,
        inode: InodeT,
        attr: pyfuse3.EntryAttributes,
        fields: pyfuse3.SetattrFields,
        fh: Optional[FileHandleT],
        ctx: pyfuse3.RequestContext,
    ) -> pyfuse3.EntryAttributes:
        self._check(Operation.SETATTR, ctx, inode)

    async def mknod(
        self,
        parent_inode: InodeT,
        name: bytes,
        mode: int,
        rdev: int,
        ctx: pyfuse3.RequestContext,
    ) -> pyfuse3.EntryAttributes:
        self._check(Operation.MKNOD, ctx, parent_inode, name)

    async def mkdir(
        self,
        parent_inode: InodeT,
        name: bytes,
        mode: int,
        ctx: pyfuse3.RequestContext,
    ) -> pyfuse3.EntryAttributes:
        self._check(Operation.MKDIR, ctx, parent_inode, name)

    async def symlink(
        self,
        parent_inode: InodeT,
        name: bytes,
        target: bytes,
        ctx: pyfuse3.RequestContext,
    ) -> pyfuse3.EntryAttributes:
        self._check(Operation.SYMLINK, ctx, parent_inode, name)

    async def rename(
        self,
        parent_inode_old: InodeT,
        name_old: bytes,
        parent_inode_new: InodeT,
        name_new: bytes,
        flags: int,
        ctx: pyfuse3.RequestContext,
    ) -> None:
        self._check(Operation.RENAME, ctx, parent_inode_old, name_old)

    async def link(
        self,
        inode: InodeT,
        new_parent_inode: InodeT,
        new_name: bytes,
        ctx: pyfuse3.RequestContext,
    ) -> pyfuse3.EntryAttributes:
        self._check(Operation.LINK, ctx, new_parent_inode, new_name)

    async def write(
        self,
        fh: FileHandleT,
        offset: int,
        buf: bytes,
    ) -> int:
        self._check(Operation.WRITE, inode=fh)

    async def create(
        self,
        parent_inode: InodeT,
        name: bytes,
        mode: int,
        flags: int,
        ctx: pyfuse3.RequestContext,
    ) -> Tuple[pyfuse3.FileInfo, pyfuse3.EntryAttributes]:
        self._check(Operation.CREATE, ctx, parent_inode, name)

    async def setxattr(
        self,
        inode: InodeT,
        name: bytes,
        value: bytes,
        ctx: pyfuse3.RequestContext,
    ) -> None:
        self._check(Operation.SETXATTR, ctx, inode, name)

    async def removexattr(
        self,
        inode: InodeT,
        name: bytes,
        ctx: pyfuse3.RequestContext,
    ) -> None:
        self._check(Operation.REMOVEXATTR, ctx, inode, name)

    # pyfuse3 leaves POSIX locks and bmap to the kernel, so these are only
    # reached by direct callers.

    async def setlk(self, fh: FileHandleT, lock, sleep: bool) -> None:
        self._check(Operation.SETLK, inode=fh)

    async def getlk(self, fh: FileHandleT, lock) -> None:
        self._check(Operation.GETLK, inode=fh)

    async def bmap(self, inode: InodeT, blocksize: int, idx: int) -> int:
        self._check(Operation.BMAP, inode=inode)

    # ==================== STATISTICS ====================

    def get_stats(self) -> dict:
        """Get filesystem and audit statistics."""
        return {
            "source_dir": self.source_dir,
            "mode": self.config.mode.value,
            "inodes_tracked": len(self.inodes),
            "audit": self.audit.get_summary(),
        }
