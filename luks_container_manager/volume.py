# Encrypted volumes managed using cryptsetup.
#
# Author: The luks-container-manager authors
# Last Change: October 19, 2026

"""Encrypted volumes managed using ``cryptsetup``."""

# Standard library modules.
import collections
import glob
import os

# External dependencies.
from executor import ExternalCommandFailed
from humanfriendly import Timer, format_size
from verboselogs import VerboseLogger

# Modules included in our package.
from luks_container_manager.commands import CommandRunner
from luks_container_manager.config import Configuration
from luks_container_manager.exceptions import (
    BusyError,
    ContainerIOError,
    FilesystemError,
    FormatError,
    OpenError,
    WrongCredential,
)

CRYPTSETUP_NO_PERMISSION = 2
"""The exit status of ``cryptsetup`` when no key slot accepts the given key (an integer)."""

LUKS_UUID_PREFIX = 'CRYPT-LUKS'
"""The prefix of device mapper UUIDs of LUKS mappings (a string)."""

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


class MappingStatus(collections.namedtuple('MappingStatus', 'name, device_file, backing_device, is_luks')):

    """
    The status of an active device mapper mapping.

    :ivar name: The name of the mapping (a string).
    :ivar device_file: The pathname of the mapped device (a string).
    :ivar backing_device: The pathname of the underlying block device (a
                          string or :data:`None`).
    :ivar is_luks: :data:`True` if the mapping is an opened LUKS volume.
    """


class EncryptedVolume(object):

    """Format, open, wipe and close LUKS volumes using ``cryptsetup``."""

    def __init__(self, config=None, runner=None):
        """
        Initialize an :class:`EncryptedVolume` object.

        :param config: A :class:`~luks_container_manager.config.Configuration` object.
        :param runner: The :class:`~luks_container_manager.commands.CommandRunner`
                       used to run external commands (defaults to a runner
                       for the local system).
        """
        self.config = config or Configuration.defaults()
        self.runner = runner or CommandRunner()

    def get_device_file(self, name):
        """
        Get the pathname of a mapped device.

        :param name: The name of the mapping (a string).
        :returns: The pathname of the mapped device (a string).
        """
        return os.path.join(self.config.mapper_directory, name)

    def is_open(self, name):
        """
        Check whether a mapping is open.

        :param name: The name of the mapping (a string).
        :returns: :data:`True` if the mapping exists, :data:`False` otherwise.
        """
        return os.path.exists(self.get_device_file(name))

    def format(self, device, key_file=None):
        """
        Create a LUKS volume on a block device.

        :param device: The pathname of the (loop) device (a string).
        :param key_file: The pathname of a key file (a string) or :data:`None`
                         to have ``cryptsetup`` ask for a pass phrase.
        :raises: :exc:`.FormatError` when ``cryptsetup`` fails.

        When a key file is given ``cryptsetup`` runs in batch mode so that it
        doesn't ask for confirmation before overwriting the device.
        """
        command = ['cryptsetup', 'luksFormat']
        if key_file:
            command.extend(('--batch-mode', '--key-file=%s' % key_file))
        command.append(device)
        logger.info("Formatting %s as LUKS volume ..", device)
        try:
            self.runner.execute(*command)
        except ExternalCommandFailed as e:
            raise FormatError("Failed to format %s! (%s)" % (device, e))

    def open(self, device, name, key_file=None):
        """
        Unlock a LUKS volume.

        :param device: The pathname of the (loop) device (a string).
        :param name: The name of the mapping (a string).
        :param key_file: The pathname of a key file (a string) or :data:`None`
                         to have ``cryptsetup`` ask for a pass phrase.
        :returns: The pathname of the mapped device (a string).
        :raises: :exc:`.WrongCredential` when the pass phrase or key file is
                 rejected, :exc:`.OpenError` when a mapping with the given
                 name already exists or ``cryptsetup`` fails otherwise.
        """
        device_file = self.get_device_file(name)
        if self.is_open(name):
            raise OpenError("Mapping %s already exists! (%s)" % (name, device_file))
        command = ['cryptsetup', 'luksOpen']
        if key_file:
            command.append('--key-file=%s' % key_file)
        command.extend((device, name))
        logger.info("Unlocking %s as %s ..", device, device_file)
        try:
            self.runner.execute(*command)
        except ExternalCommandFailed as e:
            if e.returncode == CRYPTSETUP_NO_PERMISSION:
                raise WrongCredential("Failed to unlock %s: Wrong pass phrase or key file!" % device)
            raise OpenError("Failed to unlock %s! (%s)" % (device, e))
        return device_file

    def close(self, name):
        """
        Lock a LUKS volume.

        :param name: The name of the mapping (a string).
        :raises: :exc:`.BusyError` when ``cryptsetup`` fails, usually because
                 the mapped device is still mounted.
        """
        logger.info("Locking %s ..", self.get_device_file(name))
        try:
            self.runner.execute('cryptsetup', 'luksClose', name)
        except ExternalCommandFailed as e:
            raise BusyError("Failed to lock mapping %s! (%s)" % (name, e))

    def wipe(self, name):
        """
        Overwrite the decrypted contents of a mapping with zeros.

        :param name: The name of the mapping (a string).
        :raises: :exc:`.ContainerIOError` when ``blockdev`` or ``dd`` fails.

        Because the encryption layer turns the zeros into random looking
        data, the areas that are later filled with real data can't be
        distinguished from the areas that never were.
        """
        device_file = self.get_device_file(name)
        try:
            size = int(self.runner.capture('blockdev', '--getsize64', device_file))
            logger.info("Wiping %s of %s ..", format_size(size, binary=True), device_file)
            timer = Timer()
            self.runner.execute(
                'dd', 'if=/dev/zero', 'of=%s' % device_file, 'bs=%i' % (1024 * 1024),
                'count=%i' % size, 'iflag=count_bytes', 'conv=fsync',
            )
            logger.verbose("Wiped %s in %s.", device_file, timer)
        except (ExternalCommandFailed, ValueError) as e:
            raise ContainerIOError("Failed to wipe %s! (%s)" % (device_file, e))

    def make_filesystem(self, name):
        """
        Create a file system on a mapping.

        :param name: The name of the mapping (a string).
        :raises: :exc:`.FilesystemError` when ``mkfs`` fails.
        """
        device_file = self.get_device_file(name)
        logger.info("Creating %s file system on %s ..", self.config.filesystem_type, device_file)
        try:
            self.runner.execute('mkfs.%s' % self.config.filesystem_type, device_file)
        except ExternalCommandFailed as e:
            raise FilesystemError("Failed to create file system on %s! (%s)" % (device_file, e))

    def status(self, name):
        """
        Get the status of an active mapping.

        :param name: The name of the mapping (a string).
        :returns: A :class:`MappingStatus` object or :data:`None` when no
                  mapping with the given name is active.
        """
        block_directory = os.path.join(self.config.sysfs_directory, 'block')
        if os.path.isdir(block_directory):
            return self.status_from_sysfs(name, block_directory)
        return self.status_from_cryptsetup(name)

    def status_from_sysfs(self, name, block_directory):
        """Get the status of a mapping from ``/sys/block/dm-*``."""
        for directory in sorted(glob.glob(os.path.join(block_directory, 'dm-*'))):
            if read_attribute(os.path.join(directory, 'dm', 'name')) == name:
                uuid = read_attribute(os.path.join(directory, 'dm', 'uuid')) or ''
                slaves_directory = os.path.join(directory, 'slaves')
                slaves = sorted(os.listdir(slaves_directory)) if os.path.isdir(slaves_directory) else []
                return MappingStatus(
                    name=name,
                    device_file=self.get_device_file(name),
                    backing_device=(os.path.join(self.config.device_directory, slaves[0]) if slaves else None),
                    is_luks=uuid.startswith(LUKS_UUID_PREFIX),
                )
        return None

    def status_from_cryptsetup(self, name):
        """Get the status of a mapping by parsing the output of ``cryptsetup status``."""
        output = self.runner.capture('cryptsetup', 'status', name, check=False)
        lines = output.splitlines()
        if not (lines and lines[0].rstrip('.').endswith(('is active', 'is active and is in use'))):
            return None
        fields = {}
        for line in lines[1:]:
            key, _, value = line.partition(':')
            fields[key.strip().lower()] = value.strip()
        return MappingStatus(
            name=name,
            device_file=self.get_device_file(name),
            backing_device=fields.get('device') or None,
            is_luks=fields.get('type', '').upper().startswith('LUKS'),
        )


def read_attribute(filename):
    """
    Read a sysfs attribute.

    :param filename: The pathname of the attribute (a string).
    :returns: The stripped contents of the file (a string) or :data:`None`
              when the file doesn't exist.
    """
    if os.path.isfile(filename):
        with open(filename) as handle:
            return handle.read().strip()
