#!/usr/bin/env python3
"""
DecoFS - Read-and-delete FUSE view for decommissioning storage

Main entry point for mounting and running DecoFS.

Usage:
    python main.py /path/to/mountpoint /path/to/source [options]

Example:
    # Expose /srv/old-volume at /mnt/drain; files can be read and deleted
    python main.py /mnt/drain /srv/old-volume

    # Browse only, deletions denied too
    python main.py /mnt/drain /srv/old-volume --read-only
"""

import argparse
import os
import sys
import signal
import logging

import pyfuse3
import trio

from decofs import DecoFS, DecoFSConfig, MountMode
from audit_logger import EventType


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog='decofs',
        description='DecoFS - Read-and-delete FUSE view of a directory',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Drain a volume: read and delete allowed, writes denied
  %(prog)s /mnt/drain /srv/old-volume

  # Let other users drain it and keep a JSON audit trail
  %(prog)s /mnt/drain /srv/old-volume --allow-other --log-file /var/log/decofs/audit.log
        """,
    )

    parser.add_argument(
        'mountpoint',
        help='Where to mount the filesystem',
    )
    parser.add_argument(
        'source',
        help='Source directory to expose',
    )

    mode_group = parser.add_argument_group('Policy')
    mode_group.add_argument(
        '--read-only',
        action='store_true',
        help='Deny deletions as well as writes',
    )
    mode_group.add_argument(
        '--attr-timeout',
        type=float,
        default=1.0,
        metavar='SECONDS',
        help='How long the kernel may cache attributes (default: 1.0)',
    )

    log_group = parser.add_argument_group('Logging')
    log_group.add_argument(
        '--log-file',
        metavar='PATH',
        help='Path to JSON audit log file',
    )
    log_group.add_argument(
        '--no-console',
        action='store_true',
        help='Disable console audit output',
    )
    log_group.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug output',
    )

    fuse_group = parser.add_argument_group('FUSE Options')
    fuse_group.add_argument(
        '--fsname',
        default='decofs',
        help='Filesystem name shown in the mount table (default: decofs)',
    )
    fuse_group.add_argument(
        '--allow-other',
        action='store_true',
        help='Allow other users to access the filesystem',
    )
    fuse_group.add_argument(
        '--fuse-debug',
        action='store_true',
        help='Enable FUSE debug output',
    )

    return parser.parse_args(argv)


def validate_args(args: argparse.Namespace) -> bool:
    """Validate command-line arguments."""
    if not os.path.isdir(args.source):
        print(f"Error: Source directory does not exist: {args.source}")
        return False

    if not os.path.isdir(args.mountpoint):
        print(f"Error: Mountpoint does not exist: {args.mountpoint}")
        return False

    if os.path.realpath(args.source) == os.path.realpath(args.mountpoint):
        print("Error: Source and mountpoint must differ")
        return False

    if args.attr_timeout < 0:
        print("Error: --attr-timeout must not be negative")
        return False

    if os.listdir(args.mountpoint):
        print(f"Warning: Mountpoint is not empty: {args.mountpoint}")

    return True


def create_config(args: argparse.Namespace) -> DecoFSConfig:
    """Create DecoFS configuration from arguments."""
    return DecoFSConfig(
        mode=MountMode.READ_ONLY if args.read_only else MountMode.READ_DELETE,
        attr_timeout=args.attr_timeout,
        fsname=args.fsname,
        allow_other=args.allow_other,
        log_file=args.log_file,
        console_logging=not args.no_console,
        debug=args.fuse_debug,
    )


def setup_logging(debug: bool) -> None:
    """Setup Python logging."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    setup_logging(args.debug)
    logger = logging.getLogger('DecoFS')

    if not validate_args(args):
        return 1

    config = create_config(args)

    try:
        fs = DecoFS(
            source_dir=os.path.abspath(args.source),
            config=config,
        )
    except (ValueError, OSError) as e:
        logger.error(f"Failed to create filesystem: {e}")
        return 1

    mountpoint = os.path.abspath(args.mountpoint)

    try:
        pyfuse3.init(fs, mountpoint, config.fuse_options())
    except RuntimeError as e:
        logger.error(f"Failed to initialize FUSE: {e}")
        fs.audit.log_error("Failed to initialize FUSE", exception=e)
        fs.audit.close()
        return 1

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        pyfuse3.terminate()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(
        f"Serving {fs.source_dir} at {mountpoint} ({config.mode.value})"
    )

    status = 0
    try:
        trio.run(pyfuse3.main)
    except Exception as e:
        logger.exception(f"Filesystem error: {e}")
        fs.audit.log_error("Filesystem error", exception=e)
        status = 1
    finally:
        pyfuse3.close(unmount=True)
        fs.audit.log_system_event(
            EventType.FILESYSTEM_UNMOUNTED,
            f"DecoFS unmounted: {mountpoint}",
            fs.get_stats(),
        )
        fs.audit.close()
        logger.info("Filesystem unmounted")

    return status


if __name__ == '__main__':
    sys.exit(main())
