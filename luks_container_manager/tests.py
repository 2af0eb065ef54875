# Test suite for the luks-container-manager package.
#
# Author: The luks-container-manager authors
# Last Change: October 19, 2026

"""
Test suite for the `luks-container-manager` package.

The external programs are simulated by :class:`SimulatedSystem` which keeps
its loop devices, mappings and mount table in a temporary directory, so the
test suite doesn't need root privileges and doesn't touch the real system.
"""

# Standard library modules.
import logging
import os
import shutil
import signal
import stat
import tempfile
import threading
import time
from unittest import mock

# External dependencies.
from executor import ExternalCommandFailed, execute, quote
from humanfriendly.testing import TestCase, run_cli

# Modules included in our package.
from luks_container_manager import ContainerManager, mapping_name
from luks_container_manager.cli import create_main, mount_main, unmount_main
from luks_container_manager.commands import CommandRunner
from luks_container_manager.config import Configuration, key_file_for
from luks_container_manager.exceptions import (
    AlreadyExists,
    AuthenticationError,
    BindError,
    BusyError,
    ContainerIOError,
    FilesystemError,
    Interrupted,
    InvalidSize,
    NoDeviceAvailable,
    NotEncrypted,
    NotMounted,
    OpenError,
    UnmountError,
    UsageError,
    WrongCredential,
)
from luks_container_manager.loop import LoopDeviceAllocator
from luks_container_manager.rollback import RollbackScope
from luks_container_manager.store import ContainerStore
from luks_container_manager.volume import EncryptedVolume

# Initialize a logger for this module.
logger = logging.getLogger(__name__)


class LuksContainerManagerTestCase(TestCase):

    """Container for the `luks-container-manager` tests."""

    def setUp(self):
        """Create a simulated system in a temporary directory."""
        super(LuksContainerManagerTestCase, self).setUp()
        self.directory = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.directory)
        self.system = SimulatedSystem(os.path.join(self.directory, 'system'))
        self.config = self.system.config
        self.manager = ContainerManager(config=self.config, runner=self.system)
        self.container = os.path.join(self.directory, 'secrets.img')
        self.mount_point = os.path.realpath(os.path.join(self.directory, 'mnt'))
        os.mkdir(self.mount_point)

    def test_mapping_name(self):
        """Test that mapping names are derived from the base name of the container."""
        assert mapping_name('/srv/containers/secrets.img') == 'secrets.img'
        assert mapping_name('/srv/my secrets (2).img') == 'my_secrets__2_.img'
        self.assertRaises(UsageError, mapping_name, '/')

    def test_find_devices_order(self):
        """Test that loop devices are scanned in ascending numeric order."""
        system = SimulatedSystem(os.path.join(self.directory, 'other'), num_loop_devices=12)
        allocator = LoopDeviceAllocator(config=system.config, runner=system)
        names = [os.path.basename(d) for d in allocator.find_devices()]
        assert names == ['loop%i' % i for i in range(12)]

    def test_allocate_skips_bound_devices(self):
        """Test that the first unbound loop device is selected."""
        allocator = LoopDeviceAllocator(config=self.config, runner=self.system)
        self.system.bind_loop_device(self.system.loop_device(0), '/srv/other.img')
        assert allocator.allocate() == self.system.loop_device(1)

    def test_allocate_without_free_devices(self):
        """Test that :exc:`.NoDeviceAvailable` is raised when all loop devices are bound."""
        allocator = LoopDeviceAllocator(config=self.config, runner=self.system)
        for index in range(self.system.num_loop_devices):
            self.system.bind_loop_device(self.system.loop_device(index), '/srv/other-%i.img' % index)
        self.assertRaises(NoDeviceAvailable, allocator.allocate)

    def test_probe_without_sysfs(self):
        """Test that ``losetup`` is used to probe loop devices when sysfs isn't available."""
        config = self.config._replace(sysfs_directory=os.path.join(self.directory, 'nonexistent'))
        allocator = LoopDeviceAllocator(config=config, runner=self.system)
        device = self.system.loop_device(2)
        assert not allocator.probe(device)
        self.system.bind_loop_device(device, '/srv/other.img')
        assert allocator.probe(device)
        assert ('losetup', device) in self.system.commands

    def test_bind_race(self):
        """Test that losing the race between probing and binding raises :exc:`.BindError`."""
        allocator = LoopDeviceAllocator(config=self.config, runner=self.system)
        device = allocator.allocate()
        # Another process binds the device before we do.
        self.system.bind_loop_device(device, '/srv/other.img')
        self.assertRaises(BindError, allocator.bind, device, self.container)

    def test_release_is_idempotent(self):
        """Test that releasing a free loop device doesn't run ``losetup -d``."""
        allocator = LoopDeviceAllocator(config=self.config, runner=self.system)
        device = allocator.allocate_and_bind(self.container)
        allocator.release(device)
        allocator.release(device)
        assert self.system.count_commands('losetup', '-d') == 1
        assert not self.system.bound_loop_devices

    def test_create_backing(self):
        """Test that container files have the requested size and random contents."""
        store = ContainerStore(config=self.config)
        store.create_backing(self.container, 100000)
        with open(self.container, 'rb') as handle:
            contents = handle.read()
        assert len(contents) == 100000
        assert len(set(contents)) > 1

    def test_create_backing_refuses_to_overwrite(self):
        """Test that existing container files are left alone unless overwriting is requested."""
        store = ContainerStore(config=self.config)
        with open(self.container, 'wb') as handle:
            handle.write(b'precious data')
        self.assertRaises(AlreadyExists, store.create_backing, self.container, 4096)
        with open(self.container, 'rb') as handle:
            assert handle.read() == b'precious data'
        store.create_backing(self.container, 4096, overwrite=True)
        assert os.path.getsize(self.container) == 4096

    def test_create_backing_invalid_size(self):
        """Test that sizes other than positive integers are rejected."""
        store = ContainerStore(config=self.config)
        for size in (0, -1, 1.5, '10', True, None):
            self.assertRaises(InvalidSize, store.create_backing, self.container, size)
        assert not os.path.exists(self.container)

    def test_generate_credential(self):
        """Test that key files are kept unless overwriting is requested."""
        store = ContainerStore(config=self.config)
        key_file = key_file_for(self.container)
        assert store.generate_credential(key_file) is True
        first = read_file(key_file)
        assert len(first) == self.config.key_size
        assert stat.S_IMODE(os.stat(key_file).st_mode) == 0o400
        assert store.generate_credential(key_file) is False
        assert read_file(key_file) == first
        assert store.generate_credential(key_file, overwrite=True) is True
        assert read_file(key_file) != first

    def test_generate_credential_keeps_foreign_key_file(self):
        """Test that a key file created by another process after the existence check is left alone."""
        store = ContainerStore(config=self.config)
        key_file = key_file_for(self.container)
        real_open = os.open

        def racing_open(filename, *args, **kw):
            # Another process creates the key file first.
            write_file(filename, 'foreign key')
            return real_open(filename, *args, **kw)
        with mock.patch('os.open', side_effect=racing_open):
            self.assertRaises(ContainerIOError, store.generate_credential, key_file)
        assert read_file(key_file) == b'foreign key'

    def test_create_with_key_file(self):
        """Test that creating a container releases all transient resources."""
        key_file = self.manager.create(self.container, 1024 * 1024, use_key_file=True)
        assert key_file == key_file_for(self.container)
        assert os.path.getsize(self.container) == 1024 * 1024
        assert len(read_file(key_file)) == self.config.key_size
        assert not self.system.bound_loop_devices
        assert not self.system.mappings
        assert self.system.command_names == [
            'losetup', 'luksFormat', 'luksOpen', 'blockdev', 'dd', 'mkfs.ext4', 'luksClose', 'losetup -d',
        ]
        format_command = self.system.find_command('luksFormat')
        assert '--batch-mode' in format_command
        assert '--key-file=%s' % key_file in format_command

    def test_create_interactive(self):
        """Test that ``cryptsetup`` prompts for the pass phrase when no key file is used."""
        assert self.manager.create(self.container, 1024 * 1024) is None
        assert not os.path.exists(key_file_for(self.container))
        format_command = self.system.find_command('luksFormat')
        assert not any(argument.startswith('--') for argument in format_command)

    def test_create_existing_container(self):
        """Test that creating a container doesn't touch an existing container."""
        with open(self.container, 'wb') as handle:
            handle.write(b'precious data')
        self.assertRaises(AlreadyExists, self.manager.create, self.container, 1024 * 1024)
        assert read_file(self.container) == b'precious data'
        assert not self.system.commands

    def test_create_overwrite_from_configuration(self):
        """Test that :attr:`.Configuration.overwrite` is honored."""
        with open(self.container, 'wb') as handle:
            handle.write(b'precious data')
        manager = ContainerManager(config=self.config._replace(overwrite=True), runner=self.system)
        manager.create(self.container, 1024 * 1024)
        assert os.path.getsize(self.container) == 1024 * 1024

    def test_create_without_free_loop_device(self):
        """Test that a failed allocation removes the container file and key file."""
        for index in range(self.system.num_loop_devices):
            self.system.bind_loop_device(self.system.loop_device(index), '/srv/other-%i.img' % index)
        self.assertRaises(NoDeviceAvailable, self.manager.create, self.container, 1024 * 1024, use_key_file=True)
        assert not os.path.exists(self.container)
        assert not os.path.exists(key_file_for(self.container))

    def test_create_interrupted_during_format(self):
        """Test that interrupting a create after binding the loop device rolls everything back."""
        self.system.interrupts.add('luksFormat')
        self.assertRaises(KeyboardInterrupt, self.manager.create, self.container, 1024 * 1024, use_key_file=True)
        assert not self.system.bound_loop_devices
        assert not os.path.exists(self.container)
        assert not os.path.exists(key_file_for(self.container))

    def test_create_terminated_during_format(self):
        """Test that ``SIGTERM`` during a create rolls everything back."""
        self.system.signals['luksFormat'] = signal.SIGTERM
        with self.assertRaises(Interrupted) as context:
            self.manager.create(self.container, 1024 * 1024, use_key_file=True)
        assert context.exception.signal_number == signal.SIGTERM
        assert not self.system.bound_loop_devices
        assert not os.path.exists(self.container)
        assert not os.path.exists(key_file_for(self.container))

    def test_create_mkfs_failure(self):
        """Test that a failing ``mkfs`` closes the mapping and releases the loop device."""
        self.system.failures['mkfs.ext4'] = 1
        self.assertRaises(FilesystemError, self.manager.create, self.container, 1024 * 1024)
        assert not self.system.mappings
        assert not self.system.bound_loop_devices
        assert not os.path.exists(self.container)
        # The mapping is closed before the loop device is released.
        names = self.system.command_names
        assert names.index('luksClose') < names.index('losetup -d')

    def test_create_format_failure(self):
        """Test that a failing ``cryptsetup luksFormat`` is reported and rolled back."""
        self.system.failures['luksFormat'] = 1
        self.assertRaises(ContainerIOError, self.manager.create, self.container, 1024 * 1024)
        assert not self.system.bound_loop_devices
        assert not os.path.exists(self.container)

    def test_round_trip(self):
        """Test that create, mount and unmount leave no loop devices bound and no mappings open."""
        key_file = self.manager.create(self.container, 1024 * 1024, use_key_file=True)
        info = self.manager.mount(self.container, self.mount_point, key_file=key_file)
        assert info.mount_point == self.mount_point
        assert info.mapping_name == 'secrets.img'
        assert info.loop_device in self.system.bound_loop_devices
        assert list(self.system.mappings) == ['secrets.img']
        assert self.manager.mounts.is_mounted(self.mount_point)
        resolved = self.manager.unmount(self.mount_point)
        assert resolved == info
        assert not self.system.bound_loop_devices
        assert not self.system.mappings
        assert not self.manager.mounts.is_mounted(self.mount_point)

    def test_mount_wrong_credential(self):
        """Test that a rejected key file rolls back the mount."""
        key_file = self.manager.create(self.container, 1024 * 1024, use_key_file=True)
        other_key_file = os.path.join(self.directory, 'other.pw')
        ContainerStore(config=self.config).generate_credential(other_key_file)
        with self.assertRaises(WrongCredential) as context:
            self.manager.mount(self.container, self.mount_point, key_file=other_key_file)
        assert isinstance(context.exception, AuthenticationError)
        assert not self.system.bound_loop_devices
        assert not self.system.mappings
        # The correct key file still works.
        self.manager.mount(self.container, self.mount_point, key_file=key_file)

    def test_mount_failure(self):
        """Test that a failing ``mount`` closes the mapping and releases the loop device."""
        key_file = self.manager.create(self.container, 1024 * 1024, use_key_file=True)
        self.system.failures['mount'] = 32
        self.assertRaises(ContainerIOError, self.manager.mount, self.container, self.mount_point, key_file=key_file)
        assert not self.system.bound_loop_devices
        assert not self.system.mappings

    def test_mount_validation(self):
        """Test that invalid arguments are rejected before any resources are acquired."""
        key_file = self.manager.create(self.container, 1024 * 1024, use_key_file=True)
        self.system.commands = []
        missing = os.path.join(self.directory, 'missing')
        self.assertRaises(UsageError, self.manager.mount, missing, self.mount_point)
        self.assertRaises(UsageError, self.manager.mount, self.container, missing)
        self.assertRaises(UsageError, self.manager.mount, self.container, key_file)
        self.assertRaises(UsageError, self.manager.mount, self.container, self.mount_point, key_file=missing)
        assert not self.system.commands

    def test_mount_busy_mount_point(self):
        """Test that a mount point that's already in use is rejected."""
        key_file = self.manager.create(self.container, 1024 * 1024, use_key_file=True)
        self.system.add_mount('/dev/sdb1', self.mount_point)
        self.assertRaises(BusyError, self.manager.mount, self.container, self.mount_point, key_file=key_file)
        assert not self.system.bound_loop_devices

    def test_mount_duplicate_mapping(self):
        """Test that a mapping name can't be opened twice."""
        key_file = self.manager.create(self.container, 1024 * 1024, use_key_file=True)
        self.manager.mount(self.container, self.mount_point, key_file=key_file)
        other_mount_point = os.path.join(self.directory, 'other')
        os.mkdir(other_mount_point)
        self.assertRaises(OpenError, self.manager.mount, self.container, other_mount_point, key_file=key_file)
        assert len(self.system.bound_loop_devices) == 1

    def test_unmount_not_mounted(self):
        """Test that unmounting a directory that isn't a mount point raises :exc:`.NotMounted`."""
        self.assertRaises(NotMounted, self.manager.unmount, self.mount_point)

    def test_unmount_not_encrypted(self):
        """Test that unmounting a file system that isn't a LUKS mapping raises :exc:`.NotEncrypted`."""
        self.system.add_mount('/dev/sdb1', self.mount_point)
        self.assertRaises(NotEncrypted, self.manager.unmount, self.mount_point)
        assert self.manager.mounts.is_mounted(self.mount_point)

    def test_unmount_busy(self):
        """Test that a busy file system keeps its mapping and loop device."""
        key_file = self.manager.create(self.container, 1024 * 1024, use_key_file=True)
        self.manager.mount(self.container, self.mount_point, key_file=key_file)
        self.system.failures['umount'] = 32
        self.assertRaises(UnmountError, self.manager.unmount, self.mount_point)
        assert self.system.mappings
        assert self.system.bound_loop_devices

    def test_unmount_drains_after_close_failure(self):
        """Test that the loop device is still released when locking the mapping fails."""
        key_file = self.manager.create(self.container, 1024 * 1024, use_key_file=True)
        self.manager.mount(self.container, self.mount_point, key_file=key_file)
        self.system.commands = []
        self.system.failures['luksClose'] = 5
        self.assertRaises(BusyError, self.manager.unmount, self.mount_point)
        assert self.system.command_names == ['umount', 'luksClose', 'losetup -d']

    def test_status_from_cryptsetup(self):
        """Test the ``cryptsetup status`` fallback used when sysfs isn't available."""
        key_file = self.manager.create(self.container, 1024 * 1024, use_key_file=True)
        info = self.manager.mount(self.container, self.mount_point, key_file=key_file)
        config = self.config._replace(sysfs_directory=os.path.join(self.directory, 'nonexistent'))
        volume = EncryptedVolume(config=config, runner=self.system)
        status = volume.status(info.mapping_name)
        assert status.is_luks
        assert status.backing_device == info.loop_device
        assert volume.status('nonexistent') is None

    def test_rollback_order(self):
        """Test that compensating actions run in reverse order and only once."""
        calls = []
        scope = RollbackScope()
        try:
            with scope:
                scope.push(calls.append, 'file')
                scope.push(calls.append, 'loop device')
                scope.push(calls.append, 'mapping')
                raise ValueError("Simulated failure!")
        except ValueError:
            pass
        assert calls == ['mapping', 'loop device', 'file']
        scope.rollback()
        assert calls == ['mapping', 'loop device', 'file']

    def test_rollback_continues_after_failure(self):
        """Test that a failing compensating action doesn't prevent the others from running."""
        calls = []

        def broken():
            raise EnvironmentError("Simulated failure!")

        def run():
            with RollbackScope() as scope:
                scope.push(calls.append, 'first')
                scope.push(broken)
                raise KeyboardInterrupt
        self.assertRaises(KeyboardInterrupt, run)
        assert calls == ['first']

    def test_rollback_discharge_and_commit(self):
        """Test that discharged and committed actions are not rolled back."""
        calls = []

        def run():
            with RollbackScope() as scope:
                action = scope.push(calls.append, 'discharged')
                scope.discharge(action)
                scope.push(calls.append, 'committed')
                scope.commit()
                scope.push(calls.append, 'rolled back')
                raise ValueError("Simulated failure!")
        self.assertRaises(ValueError, run)
        assert calls == ['discharged', 'rolled back']

    def test_rollback_on_signal(self):
        """Test that ``SIGTERM`` unwinds a rollback scope and the previous handler is restored."""
        calls = []
        previous_handler = signal.getsignal(signal.SIGTERM)

        def run():
            with RollbackScope() as scope:
                scope.push(calls.append, 'cleanup')
                os.kill(os.getpid(), signal.SIGTERM)
        with self.assertRaises(Interrupted) as context:
            run()
        assert context.exception.signal_number == signal.SIGTERM
        assert calls == ['cleanup']
        assert signal.getsignal(signal.SIGTERM) == previous_handler

    def test_command_runner(self):
        """Test that the command runner reports output and exit status and forgets finished commands."""
        runner = CommandRunner()
        assert runner.capture('echo', 'hello') == 'hello'
        assert runner.test('true') is True
        assert runner.test('false') is False
        self.assertRaises(ExternalCommandFailed, runner.execute, 'false')
        assert not runner.running

    def test_rollback_terminates_running_command(self):
        """Test that ``SIGTERM`` stops a running command before the compensating actions run."""
        marker = os.path.join(self.directory, 'finished')
        runner = CommandRunner()
        calls = []
        timer = threading.Timer(0.5, os.kill, (os.getpid(), signal.SIGTERM))
        self.addCleanup(timer.cancel)

        def run():
            with RollbackScope(runner=runner) as scope:
                scope.push(calls.append, 'cleanup')
                timer.start()
                runner.execute('sh', '-c', 'sleep 2 && touch %s' % quote(marker))
        with self.assertRaises(Interrupted) as context:
            run()
        assert context.exception.signal_number == signal.SIGTERM
        assert calls == ['cleanup']
        assert not runner.running
        # The command would have created the marker after two seconds.
        time.sleep(3)
        assert not os.path.exists(marker)

    def test_create_usage(self):
        """Test the usage message and argument validation of ``luks-container-create``."""
        returncode, output = run_cli(create_main, '--help')
        assert returncode == 0
        assert 'luks-container-create' in output
        for arguments in (['-c', self.container], ['-s', '10'], ['-c', self.container, '-s', '0'],
                          ['-c', self.container, '-s', 'ten'], ['-c', self.container, '-s', '10', 'extra']):
            returncode, output = run_cli(create_main, *arguments)
            assert returncode == 1
        assert not os.path.exists(self.container)

    def test_mount_usage(self):
        """Test the usage message and argument validation of ``luks-container-mount``."""
        returncode, output = run_cli(mount_main, '--help')
        assert returncode == 0
        assert 'MOUNTPOINT' in output
        returncode, output = run_cli(mount_main, self.container)
        assert returncode == 1

    def test_unmount_usage(self):
        """Test the usage message and argument validation of ``luks-container-unmount``."""
        returncode, output = run_cli(unmount_main, '--help')
        assert returncode == 0
        assert 'MOUNTPOINT' in output
        returncode, output = run_cli(unmount_main)
        assert returncode == 1

    def test_unmount_batch_continues_after_failure(self):
        """Test that ``luks-container-unmount`` keeps going after a mount point fails."""
        key_file = self.manager.create(self.container, 1024 * 1024, use_key_file=True)
        self.manager.mount(self.container, self.mount_point, key_file=key_file)
        not_mounted = os.path.join(self.directory, 'not-mounted')
        os.mkdir(not_mounted)
        with mock.patch('os.getuid', return_value=0), \
                mock.patch('luks_container_manager.cli.ContainerManager', return_value=self.manager):
            returncode, output = run_cli(unmount_main, not_mounted, self.mount_point)
        assert returncode == 1
        assert not self.manager.mounts.is_mounted(self.mount_point)
        assert not self.system.bound_loop_devices
        assert not self.system.mappings


class SimulatedSystem(CommandRunner):

    """
    Command runner that simulates the external programs.

    The loop devices, sysfs attributes, mapped devices and mount table that
    the real programs would change are represented by files in a temporary
    directory, so that the code under test observes the effects of the
    commands it runs.
    """

    def __init__(self, root, num_loop_devices=4):
        """
        Initialize a :class:`SimulatedSystem` object.

        :param root: The directory that holds the simulated state (a string).
        :param num_loop_devices: The number of loop devices (an integer).
        """
        super(SimulatedSystem, self).__init__()
        self.root = root
        self.num_loop_devices = num_loop_devices
        self.config = Configuration.defaults(
            device_directory=os.path.join(root, 'dev'),
            mapper_directory=os.path.join(root, 'dev', 'mapper'),
            sysfs_directory=os.path.join(root, 'sys'),
            mounts_file=os.path.join(root, 'mounts'),
        )
        self.commands = []
        self.failures = {}
        self.interrupts = set()
        self.signals = {}
        self.credentials = {}
        self.mappings = {}
        self.mounted = []
        self.next_mapping_index = 0
        os.makedirs(self.config.mapper_directory)
        os.makedirs(os.path.join(self.config.sysfs_directory, 'block'))
        for index in range(num_loop_devices):
            touch(self.loop_device(index))
            os.makedirs(self.sysfs_path(self.loop_device(index), 'loop'))
        self.save_mounts()

    def loop_device(self, index):
        """Get the pathname of a simulated loop device."""
        return os.path.join(self.config.device_directory, 'loop%i' % index)

    def sysfs_path(self, device, *args):
        """Get a pathname in the sysfs directory of a simulated block device."""
        return os.path.join(self.config.sysfs_directory, 'block', os.path.basename(device), *args)

    @property
    def bound_loop_devices(self):
        """The simulated loop devices that are bound (a list of strings)."""
        return [self.loop_device(i) for i in range(self.num_loop_devices)
                if self.get_backing_file(self.loop_device(i))]

    @property
    def command_names(self):
        """The names of the simulated commands that were run (a list of strings)."""
        return [self.get_command_name(command) for command in self.commands]

    def count_commands(self, *prefix):
        """Count the commands that start with the given arguments."""
        return sum(1 for command in self.commands if command[:len(prefix)] == prefix)

    def find_command(self, name):
        """Find the first command with the given name."""
        for command in self.commands:
            if self.get_command_name(command) == name:
                return command

    def get_command_name(self, command):
        """Get a short name for a command (used to inject failures)."""
        if command[0] == 'cryptsetup':
            return command[1]
        if command[0] == 'losetup' and command[1] == '-d':
            return 'losetup -d'
        return command[0]

    def get_backing_file(self, device):
        """Get the file bound to a simulated loop device (or :data:`None`)."""
        filename = self.sysfs_path(device, 'loop', 'backing_file')
        if os.path.isfile(filename):
            with open(filename) as handle:
                return handle.read().strip()

    def bind_loop_device(self, device, filename):
        """Bind a simulated loop device."""
        with open(self.sysfs_path(device, 'loop', 'backing_file'), 'w') as handle:
            handle.write(filename + '\n')

    def add_mount(self, device_file, mount_point):
        """Add an entry to the simulated mount table."""
        self.mounted.append((device_file, mount_point))
        self.save_mounts()

    def save_mounts(self):
        """Write the simulated mount table in the format of ``/proc/mounts``."""
        with open(self.config.mounts_file, 'w') as handle:
            handle.write('proc /proc proc rw,nosuid,nodev,noexec,relatime 0 0\n')
            for device_file, mount_point in self.mounted:
                handle.write('%s %s ext4 rw,relatime 0 0\n' % (device_file, mount_point))

    def execute(self, *command, **options):
        """Simulate an external command."""
        self.commands.append(command)
        name = self.get_command_name(command)
        if name in self.interrupts:
            raise KeyboardInterrupt
        if name in self.signals:
            os.kill(os.getpid(), self.signals[name])
        if name in self.failures:
            returncode, output = self.failures[name], ''
        else:
            handler = getattr(self, 'simulate_%s' % command[0].replace('.', '_'))
            returncode, output = handler(*command[1:])
        if returncode != 0:
            if options.get('check', True):
                # Let executor raise a genuine ExternalCommandFailed exception.
                execute('sh', '-c', 'exit %i' % returncode, silent=True)
            return output if options.get('capture') else False
        return output if options.get('capture') else True

    def simulate_losetup(self, *arguments):
        """Simulate ``losetup``."""
        if arguments[0] == '-d':
            if not self.get_backing_file(arguments[1]):
                return 1, ''
            os.unlink(self.sysfs_path(arguments[1], 'loop', 'backing_file'))
        elif len(arguments) == 2:
            if self.get_backing_file(arguments[0]):
                return 1, ''
            self.bind_loop_device(*arguments)
        elif not self.get_backing_file(arguments[0]):
            return 1, ''
        return 0, ''

    def simulate_cryptsetup(self, action, *arguments):
        """Simulate ``cryptsetup``."""
        positional = [a for a in arguments if not a.startswith('-')]
        key_file = None
        for argument in arguments:
            if argument.startswith('--key-file='):
                key_file = argument.split('=', 1)[1]
        credential = read_file(key_file) if key_file else 'interactive'
        if action == 'luksFormat':
            backing_file = self.get_backing_file(positional[0])
            if not backing_file:
                return 4, ''
            self.credentials[backing_file] = credential
        elif action == 'luksOpen':
            device, name = positional
            if name in self.mappings:
                return 5, ''
            if self.credentials.get(self.get_backing_file(device)) != credential:
                return 2, ''
            self.open_mapping(device, name)
        elif action == 'luksClose':
            name = positional[0]
            if name not in self.mappings:
                return 4, ''
            if any(d == os.path.join(self.config.mapper_directory, name) for d, m in self.mounted):
                return 5, ''
            self.close_mapping(name)
        elif action == 'status':
            name = positional[0]
            device_file = os.path.join(self.config.mapper_directory, name)
            if name not in self.mappings:
                return 4, '%s is inactive.' % device_file
            return 0, '\n'.join([
                '%s is active.' % device_file,
                '  type:    LUKS2',
                '  cipher:  aes-xts-plain64',
                '  device:  %s' % self.mappings[name][0],
                '  loop:    %s' % self.get_backing_file(self.mappings[name][0]),
            ])
        return 0, ''

    def open_mapping(self, device, name):
        """Create the mapped device and its sysfs attributes."""
        directory = self.sysfs_path('dm-%i' % self.next_mapping_index)
        self.next_mapping_index += 1
        os.makedirs(os.path.join(directory, 'dm'))
        os.makedirs(os.path.join(directory, 'slaves'))
        write_file(os.path.join(directory, 'dm', 'name'), name + '\n')
        write_file(os.path.join(directory, 'dm', 'uuid'), 'CRYPT-LUKS2-0123456789abcdef-%s\n' % name)
        touch(os.path.join(directory, 'slaves', os.path.basename(device)))
        touch(os.path.join(self.config.mapper_directory, name))
        self.mappings[name] = (device, directory)

    def close_mapping(self, name):
        """Remove the mapped device and its sysfs attributes."""
        device, directory = self.mappings.pop(name)
        shutil.rmtree(directory)
        os.unlink(os.path.join(self.config.mapper_directory, name))

    def simulate_blockdev(self, *arguments):
        """Simulate ``blockdev --getsize64``."""
        return 0, '%i\n' % (1024 * 1024)

    def simulate_dd(self, *arguments):
        """Simulate ``dd``."""
        return 0, ''

    def simulate_mkfs_ext4(self, *arguments):
        """Simulate ``mkfs.ext4``."""
        return 0, ''

    def simulate_mount(self, device_file, mount_point):
        """Simulate ``mount``."""
        if any(m == mount_point for d, m in self.mounted):
            return 32, ''
        self.add_mount(device_file, mount_point)
        return 0, ''

    def simulate_umount(self, mount_point):
        """Simulate ``umount``."""
        for entry in self.mounted:
            if entry[1] == mount_point:
                self.mounted.remove(entry)
                self.save_mounts()
                return 0, ''
        return 32, ''


def read_file(filename):
    """Read the contents of a file as bytes."""
    with open(filename, 'rb') as handle:
        return handle.read()


def write_file(filename, contents):
    """Write text to a file."""
    with open(filename, 'w') as handle:
        handle.write(contents)


def touch(filename):
    """Create an empty file."""
    write_file(filename, '')
