# Allocation of loop devices.
#
# Author: The luks-container-manager authors
# Last Change: October 19, 2026

"""
Allocation of loop devices.

The loop device table is shared by all processes on the system and no lock is
held between finding a free device and binding it, so two concurrent
invocations can select the same device. The loser of that race gets a
:exc:`.BindError` from :func:`LoopDeviceAllocator.bind()`.
"""

# Standard library modules.
import glob
import os
import re

# External dependencies.
from executor import ExternalCommandFailed
from verboselogs import VerboseLogger

# Modules included in our package.
from luks_container_manager.commands import CommandRunner
from luks_container_manager.config import Configuration
from luks_container_manager.exceptions import BindError, BusyError, NoDeviceAvailable

LOOP_DEVICE_PATTERN = re.compile(r'^loop(\d+)$')
"""Compiled regular expression that matches the base name of loop device nodes."""

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


class LoopDeviceAllocator(object):

    """Find, bind and release loop devices using ``losetup`` and sysfs."""

    def __init__(self, config=None, runner=None):
        """
        Initialize a :class:`LoopDeviceAllocator` object.

        :param config: A :class:`~luks_container_manager.config.Configuration` object.
        :param runner: The :class:`~luks_container_manager.commands.CommandRunner`
                       used to run external commands (defaults to a runner
                       for the local system).
        """
        self.config = config or Configuration.defaults()
        self.runner = runner or CommandRunner()

    def find_devices(self):
        """
        Find the available loop device nodes.

        :returns: A list of device pathnames sorted by ascending index.
        """
        devices = []
        for pathname in glob.glob(os.path.join(self.config.device_directory, 'loop*')):
            match = LOOP_DEVICE_PATTERN.match(os.path.basename(pathname))
            if match:
                devices.append((int(match.group(1)), pathname))
        return [pathname for index, pathname in sorted(devices)]

    def probe(self, device):
        """
        Check whether a loop device is bound to a backing file.

        :param device: The pathname of a loop device (a string).
        :returns: :data:`True` if the device is bound, :data:`False` if it's free.
        """
        sysfs_entry = os.path.join(self.config.sysfs_directory, 'block', os.path.basename(device))
        if os.path.isdir(sysfs_entry):
            return os.path.exists(os.path.join(sysfs_entry, 'loop', 'backing_file'))
        # Without sysfs we fall back to the exit status of `losetup DEVICE'.
        return self.runner.test('losetup', device, silent=True)

    def allocate(self):
        """
        Find the first loop device that isn't bound.

        :returns: The pathname of a free loop device (a string).
        :raises: :exc:`.NoDeviceAvailable` when all loop devices are bound.
        """
        devices = self.find_devices()
        for device in devices:
            if self.probe(device):
                logger.debug("Loop device %s is in use.", device)
            else:
                logger.verbose("Selected free loop device %s.", device)
                return device
        raise NoDeviceAvailable("No free loop device available! (checked %i devices)" % len(devices))

    def bind(self, device, filename):
        """
        Attach a file to a loop device.

        :param device: The pathname of a free loop device (a string).
        :param filename: The pathname of the container file (a string).
        :raises: :exc:`.BindError` when ``losetup`` fails, for example because
                 another process bound the device after it was probed.
        """
        logger.info("Attaching %s to loop device %s ..", filename, device)
        try:
            self.runner.execute('losetup', device, filename)
        except ExternalCommandFailed as e:
            raise BindError("Failed to attach %s to %s! (%s)" % (filename, device, e))

    def allocate_and_bind(self, filename):
        """
        Attach a file to the first free loop device.

        :param filename: The pathname of the container file (a string).
        :returns: The pathname of the loop device (a string).
        :raises: :exc:`.NoDeviceAvailable` or :exc:`.BindError`.
        """
        device = self.allocate()
        self.bind(device, filename)
        return device

    def release(self, device):
        """
        Detach a loop device from its backing file.

        :param device: The pathname of a loop device (a string).
        :raises: :exc:`.BusyError` when ``losetup`` fails.

        Releasing a device that isn't bound does nothing.
        """
        if not self.probe(device):
            logger.verbose("Loop device %s is already free.", device)
            return
        logger.info("Detaching loop device %s ..", device)
        try:
            self.runner.execute('losetup', '-d', device)
        except ExternalCommandFailed as e:
            raise BusyError("Failed to detach loop device %s! (%s)" % (device, e))
