# Mounting and unmounting of decrypted containers.
#
# Author: The luks-container-manager authors
# Last Change: October 19, 2026

"""
Mounting and unmounting of decrypted containers.

Nothing is remembered between mounting and unmounting a container: Given only
a mount point, :func:`MountController.resolve()` reconstructs the mapping and
loop device from the live mount table and the device mapper status.
"""

# Standard library modules.
import collections
import os

# External dependencies.
from executor import ExternalCommandFailed
from linux_utils.fstab import find_mounted_filesystems
from verboselogs import VerboseLogger

# Modules included in our package.
from luks_container_manager.commands import CommandRunner
from luks_container_manager.config import Configuration
from luks_container_manager.exceptions import MountError, NotEncrypted, NotMounted, UnmountError
from luks_container_manager.loop import LOOP_DEVICE_PATTERN
from luks_container_manager.volume import EncryptedVolume

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


class MountInfo(collections.namedtuple('MountInfo', 'mount_point, device_file, mapping_name, loop_device')):

    """
    The resources behind a mounted container.

    :ivar mount_point: The canonical pathname of the mount point (a string).
    :ivar device_file: The pathname of the mapped device (a string).
    :ivar mapping_name: The name of the mapping (a string).
    :ivar loop_device: The pathname of the loop device (a string or
                       :data:`None` when the mapping isn't backed by a loop
                       device).
    """


class MountController(object):

    """Mount, unmount and resolve mounted containers."""

    def __init__(self, config=None, runner=None, volume=None):
        """
        Initialize a :class:`MountController` object.

        :param config: A :class:`~luks_container_manager.config.Configuration` object.
        :param runner: The :class:`~luks_container_manager.commands.CommandRunner`
                       used to run external commands (defaults to a runner
                       for the local system).
        :param volume: The :class:`~luks_container_manager.volume.EncryptedVolume`
                       used to query mapping status.
        """
        self.config = config or Configuration.defaults()
        self.runner = runner or CommandRunner()
        self.volume = volume or EncryptedVolume(config=self.config, runner=self.runner)

    def find_mount(self, mount_point):
        """
        Find a mount point in the live mount table.

        :param mount_point: The canonical pathname of a directory (a string).
        :returns: A :class:`~linux_utils.fstab.FileSystemEntry` object or
                  :data:`None`.
        """
        match = None
        for entry in find_mounted_filesystems(filename=self.config.mounts_file):
            if os.path.normpath(entry.mount_point) == mount_point:
                # Later entries shadow earlier ones.
                match = entry
        return match

    def is_mounted(self, mount_point):
        """
        Check whether a directory is a mount point.

        :param mount_point: The pathname of a directory (a string).
        :returns: :data:`True` if something is mounted on the directory,
                  :data:`False` otherwise.
        """
        return self.find_mount(os.path.realpath(mount_point)) is not None

    def mount(self, device_file, mount_point):
        """
        Mount a file system.

        :param device_file: The pathname of the mapped device (a string).
        :param mount_point: The pathname of an existing directory (a string).
        :raises: :exc:`.MountError` when the mount point doesn't exist, isn't
                 a directory or ``mount`` fails.
        """
        if not os.path.exists(mount_point):
            raise MountError("Mount point %s doesn't exist!" % mount_point)
        if not os.path.isdir(mount_point):
            raise MountError("Mount point %s isn't a directory!" % mount_point)
        logger.info("Mounting %s on %s ..", device_file, mount_point)
        try:
            self.runner.execute('mount', device_file, mount_point)
        except ExternalCommandFailed as e:
            raise MountError("Failed to mount %s on %s! (%s)" % (device_file, mount_point, e))

    def resolve(self, mount_point):
        """
        Find the mapping and loop device behind a mount point.

        :param mount_point: The pathname of a directory (a string).
        :returns: A :class:`MountInfo` object.
        :raises: :exc:`.NotMounted` when nothing is mounted on the directory,
                 :exc:`.NotEncrypted` when the mounted device isn't an active
                 LUKS mapping.
        """
        canonical_path = os.path.realpath(mount_point)
        entry = self.find_mount(canonical_path)
        if entry is None:
            raise NotMounted("Nothing is mounted on %s!" % canonical_path)
        device_file = entry.device_file or entry.device
        mapping_name = os.path.basename(device_file)
        logger.debug("Found %s mounted on %s.", device_file, canonical_path)
        status = self.volume.status(mapping_name)
        if status is None or not status.is_luks:
            raise NotEncrypted("Device %s mounted on %s isn't an active LUKS mapping!" % (device_file, canonical_path))
        loop_device = status.backing_device
        if loop_device and not LOOP_DEVICE_PATTERN.match(os.path.basename(loop_device)):
            logger.notice("Mapping %s is backed by %s which isn't a loop device.", mapping_name, loop_device)
            loop_device = None
        return MountInfo(
            mount_point=canonical_path,
            device_file=device_file,
            mapping_name=mapping_name,
            loop_device=loop_device,
        )

    def unmount(self, mount_point):
        """
        Unmount a file system.

        :param mount_point: The pathname of the mount point (a string).
        :raises: :exc:`.UnmountError` when ``umount`` fails, for example
                 because files are still open.
        """
        logger.info("Unmounting %s ..", mount_point)
        try:
            self.runner.execute('umount', mount_point)
        except ExternalCommandFailed as e:
            raise UnmountError("Failed to unmount %s! (%s)" % (mount_point, e))
