# Command line interfaces for luks-container-manager.
#
# Author: The luks-container-manager authors
# Last Change: October 19, 2026

"""
Command line interfaces for `luks-container-manager`.

This module defines the ``luks-container-create``, ``luks-container-mount``
and ``luks-container-unmount`` programs. Their usage messages are available
as :data:`CREATE_USAGE`, :data:`MOUNT_USAGE` and :data:`UNMOUNT_USAGE`.
"""

# Standard library modules.
import getopt
import logging
import os
import sys

# External dependencies.
import coloredlogs
from humanfriendly import pluralize
from humanfriendly.terminal import usage, warning

# Modules included in our package.
from luks_container_manager import ContainerManager
from luks_container_manager.config import Configuration
from luks_container_manager.exceptions import ContainerError, UsageError

CREATE_USAGE = """
Usage: luks-container-create [OPTIONS]

Create a container file filled with random data, format it as a LUKS encrypted
volume and create a file system inside. You'll be asked for a pass phrase
unless --key-file is given.

Supported options:

  -c, --container=FILE

    The pathname of the container file to create (required).

  -s, --size=SIZE_MB

    The size of the container file in mebibytes (a positive integer, required).

  -k, --key-file

    Generate a key file named FILE.pw next to the container and use
    it instead of a pass phrase.

  -f, --force

    Overwrite an existing container file (and key file).

  -d, --debug

    Enable debug logging.

  -v, --verbose

    Increase logging verbosity (can be repeated).

  -h, --help

    Show this message and exit.
"""

MOUNT_USAGE = """
Usage: luks-container-mount [OPTIONS] CONTAINER MOUNTPOINT

Attach the container file CONTAINER to a free loop device, unlock it and mount
the file system inside on the existing directory MOUNTPOINT. You'll be asked
for a pass phrase unless --key-file is given.

Supported options:

  -k, --key-file=KEYFILE

    Unlock the container using the given key file.

  -d, --debug

    Enable debug logging.

  -v, --verbose

    Increase logging verbosity (can be repeated).

  -h, --help

    Show this message and exit.
"""

UNMOUNT_USAGE = """
Usage: luks-container-unmount [OPTIONS] MOUNTPOINT..

Unmount the containers mounted on the given directories, lock them and release
their loop devices. Failure to unmount one directory doesn't prevent the
remaining directories from being unmounted.

Supported options:

  -d, --debug

    Enable debug logging.

  -v, --verbose

    Increase logging verbosity (can be repeated).

  -h, --help

    Show this message and exit.
"""

MEBIBYTE = 1024 * 1024
"""The number of bytes in a mebibyte (an integer)."""

# Initialize a logger for this module.
logger = logging.getLogger(__name__)


def create_main():
    """Command line interface for the ``luks-container-create`` program."""
    # Initialize logging to the terminal and system log.
    coloredlogs.install(syslog=True)
    # Define command line option defaults.
    filename = None
    size = None
    use_key_file = False
    overwrite = False
    # Parse the command line arguments.
    try:
        options, arguments = getopt.getopt(sys.argv[1:], 'c:s:kfdvh', [
            'container=', 'size=', 'key-file', 'force', 'debug', 'verbose', 'help',
        ])
        for option, value in options:
            if option in ('-c', '--container'):
                filename = value
            elif option in ('-s', '--size'):
                size = parse_size_mb(value)
            elif option in ('-k', '--key-file'):
                use_key_file = True
            elif option in ('-f', '--force'):
                overwrite = True
            elif option in ('-d', '--debug'):
                coloredlogs.set_level(logging.DEBUG)
            elif option in ('-v', '--verbose'):
                coloredlogs.increase_verbosity()
            elif option in ('-h', '--help'):
                usage(CREATE_USAGE)
                return
            else:
                assert False, "Unhandled option!"
        if arguments:
            raise UsageError("Unexpected positional arguments!")
        if not filename:
            raise UsageError("The --container option is required!")
        if size is None:
            raise UsageError("The --size option is required!")
    except Exception as e:
        warning("Error: Failed to parse command line arguments! (%s)", e)
        sys.exit(1)
    ensure_root()
    config = Configuration.defaults(overwrite=overwrite)
    manager = ContainerManager(config=config)
    run_operation(manager.create, filename, size * MEBIBYTE, use_key_file=use_key_file)


def mount_main():
    """Command line interface for the ``luks-container-mount`` program."""
    # Initialize logging to the terminal and system log.
    coloredlogs.install(syslog=True)
    # Define command line option defaults.
    key_file = None
    # Parse the command line arguments.
    try:
        options, arguments = getopt.getopt(sys.argv[1:], 'k:dvh', [
            'key-file=', 'debug', 'verbose', 'help',
        ])
        for option, value in options:
            if option in ('-k', '--key-file'):
                key_file = value
            elif option in ('-d', '--debug'):
                coloredlogs.set_level(logging.DEBUG)
            elif option in ('-v', '--verbose'):
                coloredlogs.increase_verbosity()
            elif option in ('-h', '--help'):
                usage(MOUNT_USAGE)
                return
            else:
                assert False, "Unhandled option!"
        if len(arguments) != 2:
            raise UsageError("Expected two positional arguments (CONTAINER and MOUNTPOINT)!")
        filename, mount_point = arguments
    except Exception as e:
        warning("Error: Failed to parse command line arguments! (%s)", e)
        sys.exit(1)
    ensure_root()
    manager = ContainerManager()
    run_operation(manager.mount, filename, mount_point, key_file=key_file)


def unmount_main():
    """Command line interface for the ``luks-container-unmount`` program."""
    # Initialize logging to the terminal and system log.
    coloredlogs.install(syslog=True)
    # Parse the command line arguments.
    try:
        options, arguments = getopt.getopt(sys.argv[1:], 'dvh', ['debug', 'verbose', 'help'])
        for option, value in options:
            if option in ('-d', '--debug'):
                coloredlogs.set_level(logging.DEBUG)
            elif option in ('-v', '--verbose'):
                coloredlogs.increase_verbosity()
            elif option in ('-h', '--help'):
                usage(UNMOUNT_USAGE)
                return
            else:
                assert False, "Unhandled option!"
        if not arguments:
            raise UsageError("Expected one or more MOUNTPOINT arguments!")
    except Exception as e:
        warning("Error: Failed to parse command line arguments! (%s)", e)
        sys.exit(1)
    ensure_root()
    manager = ContainerManager()
    failed = run_operation(unmount_all, manager, arguments)
    if failed:
        logger.error("Failed to unmount %s.", pluralize(failed, "mount point"))
        sys.exit(1)


def unmount_all(manager, mount_points):
    """
    Unmount a batch of containers, continuing past failures.

    :param manager: A :class:`.ContainerManager` object.
    :param mount_points: An iterable of mount point pathnames (strings).
    :returns: The number of mount points that failed to unmount (an integer).
    """
    failed = 0
    for mount_point in mount_points:
        try:
            manager.unmount(mount_point)
        except ContainerError as e:
            logger.error("Skipping %s: %s", mount_point, e)
            failed += 1
        except Exception:
            logger.exception("Unexpected exception while unmounting %s!", mount_point)
            failed += 1
    return failed


def parse_size_mb(value):
    """
    Parse the ``--size`` option.

    :param value: The value given on the command line (a string).
    :returns: The size in mebibytes (a positive integer).
    :raises: :exc:`.UsageError` when the value isn't a positive integer.
    """
    if not value.isdigit() or int(value) <= 0:
        raise UsageError("Invalid size %r! (expected a positive number of mebibytes)" % value)
    return int(value)


def ensure_root():
    """Make sure we're running as root (after parsing the command line so that root isn't required to list the usage message)."""
    if os.getuid() != 0:
        warning("Error: Please run this command as root!")
        sys.exit(1)


def run_operation(function, *args, **kw):
    """Run an operation of :class:`.ContainerManager` and terminate with exit status 1 when it fails."""
    try:
        return function(*args, **kw)
    except KeyboardInterrupt:
        logger.error("Interrupted by Control-C, terminating ..")
        sys.exit(1)
    except ContainerError as e:
        logger.error("%s", e)
        sys.exit(1)
    except Exception:
        logger.exception("Terminating due to unexpected exception!")
        sys.exit(1)
