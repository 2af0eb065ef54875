# Custom exceptions raised by luks-container-manager.
#
# Author: The luks-container-manager authors
# Last Change: October 19, 2026

"""
Custom exceptions raised by `luks-container-manager`.

The exceptions are grouped in a small number of categories so that callers
can decide how to react without knowing about every individual failure:

- :exc:`UsageError` and :exc:`AlreadyExists` are raised before any side
  effects have happened.
- :exc:`ResourceUnavailable` means a loop device or mount point is not
  available (right now).
- :exc:`AuthenticationError` means the pass phrase or key file was rejected.
- :exc:`ContainerIOError` covers failing external programs and disk I/O.
- :exc:`StateInconsistency` means the live system doesn't look the way
  :func:`~luks_container_manager.ContainerManager.unmount()` expects.
"""


class ContainerError(Exception):

    """Base class for exceptions raised by `luks-container-manager`."""


class UsageError(ContainerError):

    """Raised when invalid arguments are given."""


class InvalidSize(UsageError):

    """Raised when the size of a container isn't a positive integer."""


class AlreadyExists(ContainerError):

    """Raised when a container file exists and overwriting wasn't requested."""


class ResourceUnavailable(ContainerError):

    """Base class for resources that are currently unavailable."""


class NoDeviceAvailable(ResourceUnavailable):

    """Raised when all loop devices are bound."""


class BusyError(ResourceUnavailable):

    """Raised when a loop device, mapping or mount point is in use."""


class AuthenticationError(ContainerError):

    """Base class for credentials that are rejected."""


class WrongCredential(AuthenticationError):

    """Raised when ``cryptsetup`` doesn't accept the pass phrase or key file."""


class ContainerIOError(ContainerError):

    """Base class for failing external programs and disk I/O."""


class BindError(ContainerIOError):

    """Raised when a container file can't be attached to a loop device."""


class FormatError(ContainerIOError):

    """Raised when ``cryptsetup luksFormat`` fails."""


class OpenError(ContainerIOError):

    """Raised when an encrypted mapping can't be opened."""


class FilesystemError(ContainerIOError):

    """Raised when the file system can't be created."""


class MountError(ContainerIOError):

    """Raised when a file system can't be mounted."""


class UnmountError(ContainerIOError):

    """Raised when a file system can't be unmounted."""


class StateInconsistency(ContainerError):

    """Base class for mount points that can't be traced back to a container."""


class NotMounted(StateInconsistency):

    """Raised when a directory isn't a mount point."""


class NotEncrypted(StateInconsistency):

    """Raised when a mounted device isn't an active LUKS mapping."""


class Interrupted(ContainerError):

    """Raised from a signal handler to unwind a :class:`~luks_container_manager.rollback.RollbackScope`."""

    def __init__(self, signal_number):
        """
        Initialize an :exc:`Interrupted` exception.

        :param signal_number: The number of the signal that was received (an integer).
        """
        self.signal_number = signal_number
        super(Interrupted, self).__init__("Interrupted by signal %i!" % signal_number)
