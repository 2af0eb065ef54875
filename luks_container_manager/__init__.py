# Python API for luks-container-manager.
#
# Author: The luks-container-manager authors
# Last Change: October 19, 2026

"""Python API for `luks-container-manager`."""

# Standard library modules.
import os
import re

# External dependencies.
from humanfriendly import Timer, compact, format_size
from verboselogs import VerboseLogger

# Modules included in our package.
from luks_container_manager.commands import CommandRunner
from luks_container_manager.config import Configuration, key_file_for
from luks_container_manager.exceptions import BusyError, ContainerError, UsageError
from luks_container_manager.loop import LoopDeviceAllocator
from luks_container_manager.mounts import MountController, MountInfo
from luks_container_manager.rollback import RollbackScope
from luks_container_manager.store import ContainerStore
from luks_container_manager.volume import EncryptedVolume

__version__ = '1.0'
"""Semi-standard module versioning."""

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


class ContainerManager(object):

    """
    Create, mount and unmount LUKS encrypted container files.

    Each operation acquires its resources inside a
    :class:`~luks_container_manager.rollback.RollbackScope` so that a failure
    (or interruption) halfway through doesn't leave loop devices bound or
    mappings open.
    """

    def __init__(self, config=None, context=None, runner=None):
        """
        Initialize a :class:`ContainerManager` object.

        :param config: A :class:`~luks_container_manager.config.Configuration`
                       object (defaults to :func:`.Configuration.defaults()`).
        :param context: An execution context created by :mod:`executor.contexts`
                        (defaults to :class:`executor.contexts.LocalContext`).
        :param runner: A :class:`~luks_container_manager.commands.CommandRunner`
                       object (defaults to a runner for `context`).
        """
        self.config = config or Configuration.defaults()
        self.runner = runner or CommandRunner(context)
        self.store = ContainerStore(config=self.config)
        self.allocator = LoopDeviceAllocator(config=self.config, runner=self.runner)
        self.volume = EncryptedVolume(config=self.config, runner=self.runner)
        self.mounts = MountController(config=self.config, runner=self.runner, volume=self.volume)

    def create(self, filename, size, use_key_file=False, overwrite=None):
        """
        Create an encrypted container file with a file system inside.

        :param filename: The pathname of the container file (a string).
        :param size: The size of the container file in bytes (a positive integer).
        :param use_key_file: :data:`True` to generate a key file next to the
                             container, :data:`False` to have ``cryptsetup``
                             ask for a pass phrase.
        :param overwrite: :data:`True` to overwrite an existing container (and
                          key file), :data:`False` to refuse, :data:`None` to
                          use :attr:`.Configuration.overwrite`.
        :returns: The pathname of the key file (a string) or :data:`None`.
        :raises: Any of the exceptions defined in :mod:`.exceptions`.

        On success the container file (and key file) remain while the loop
        device and mapping are released again. On failure everything created
        by this call is removed.
        """
        if overwrite is None:
            overwrite = self.config.overwrite
        filename = os.path.abspath(filename)
        key_file = key_file_for(filename) if use_key_file else None
        name = mapping_name(filename)
        timer = Timer()
        with RollbackScope(runner=self.runner) as scope:
            self.store.create_backing(filename, size, overwrite=overwrite)
            scope.push(self.store.remove, filename)
            if key_file and self.store.generate_credential(key_file, overwrite=overwrite):
                scope.push(self.store.remove, key_file)
            device = self.allocator.allocate_and_bind(filename)
            release_device = scope.push(self.allocator.release, device)
            self.volume.format(device, key_file=key_file)
            self.volume.open(device, name, key_file=key_file)
            close_mapping = scope.push(self.volume.close, name)
            self.volume.wipe(name)
            self.volume.make_filesystem(name)
            scope.discharge(close_mapping)
            scope.discharge(release_device)
            scope.commit()
        logger.success("Created %s encrypted container %s in %s.",
                       format_size(size, binary=True), filename, timer)
        if key_file:
            logger.notice("The key file %s unlocks the container, keep it safe!", key_file)
        return key_file

    def mount(self, filename, mount_point, key_file=None):
        """
        Unlock and mount an encrypted container file.

        :param filename: The pathname of the container file (a string).
        :param mount_point: The pathname of an existing directory (a string).
        :param key_file: The pathname of a key file (a string) or :data:`None`
                         to have ``cryptsetup`` ask for a pass phrase.
        :returns: A :class:`~luks_container_manager.mounts.MountInfo` object.
        :raises: Any of the exceptions defined in :mod:`.exceptions`.

        On success the loop device, mapping and mount remain active until
        :func:`unmount()` is called.
        """
        filename = os.path.abspath(filename)
        mount_point = os.path.realpath(mount_point)
        if not os.path.isfile(filename):
            raise UsageError("Container file %s doesn't exist or isn't a regular file!" % filename)
        if not os.path.isdir(mount_point):
            raise UsageError("Mount point %s doesn't exist or isn't a directory!" % mount_point)
        if key_file and not os.access(key_file, os.R_OK):
            raise UsageError("Key file %s doesn't exist or isn't readable!" % key_file)
        if self.mounts.is_mounted(mount_point):
            raise BusyError("Mount point %s is already in use!" % mount_point)
        name = mapping_name(filename)
        with RollbackScope(runner=self.runner) as scope:
            device = self.allocator.allocate_and_bind(filename)
            scope.push(self.allocator.release, device)
            device_file = self.volume.open(device, name, key_file=key_file)
            scope.push(self.volume.close, name)
            self.mounts.mount(device_file, mount_point)
            scope.commit()
        logger.success("Mounted %s on %s.", filename, mount_point)
        return MountInfo(mount_point=mount_point, device_file=device_file, mapping_name=name, loop_device=device)

    def unmount(self, mount_point):
        """
        Unmount and lock an encrypted container file.

        :param mount_point: The pathname of the mount point (a string).
        :returns: A :class:`~luks_container_manager.mounts.MountInfo` object.
        :raises: :exc:`.NotMounted`, :exc:`.NotEncrypted` or
                 :exc:`.UnmountError` when the container can't be unmounted,
                 otherwise the first error raised while locking the mapping or
                 releasing the loop device.

        The resources are found by :func:`.MountController.resolve()`. After
        the file system has been unmounted the remaining steps are attempted
        even when one of them fails.
        """
        info = self.mounts.resolve(mount_point)
        self.mounts.unmount(info.mount_point)
        errors = []
        try:
            self.volume.close(info.mapping_name)
        except ContainerError as e:
            logger.error("%s", e)
            errors.append(e)
        if info.loop_device:
            try:
                self.allocator.release(info.loop_device)
            except ContainerError as e:
                logger.error("%s", e)
                errors.append(e)
        if errors:
            raise errors[0]
        logger.success("Unmounted %s.", info.mount_point)
        return info


def mapping_name(filename):
    """
    Derive the name of the mapping for a container file.

    :param filename: The pathname of the container file (a string).
    :returns: The base name of the container file with characters that don't
              belong in device mapper names replaced by underscores (a string).
    """
    name = re.sub(r'[^A-Za-z0-9._-]', '_', os.path.basename(filename))
    if name in ('', '.', '..'):
        raise UsageError(compact("""
            Can't derive mapping name from container
            filename {filename}!
        """, filename=repr(filename)))
    return name


def create_container(filename, size, use_key_file=False, overwrite=False, **options):
    """
    Create an encrypted container file.

    :param options: Any keyword arguments are passed on to :class:`ContainerManager`.

    Refer to :func:`ContainerManager.create()` for details.
    """
    return ContainerManager(**options).create(filename, size, use_key_file=use_key_file, overwrite=overwrite)


def mount_container(filename, mount_point, key_file=None, **options):
    """Unlock and mount an encrypted container file (see :func:`ContainerManager.mount()`)."""
    return ContainerManager(**options).mount(filename, mount_point, key_file=key_file)


def unmount_container(mount_point, **options):
    """Unmount and lock an encrypted container file (see :func:`ContainerManager.unmount()`)."""
    return ContainerManager(**options).unmount(mount_point)
