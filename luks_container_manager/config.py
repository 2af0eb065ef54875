# Configuration defaults for luks-container-manager.
#
# Author: The luks-container-manager authors
# Last Change: October 19, 2026

"""Configuration defaults for `luks-container-manager`."""

# Standard library modules.
import collections

DEFAULT_FILESYSTEM_TYPE = 'ext4'
"""The type of file system created inside new containers (a string)."""

DEFAULT_KEY_SIZE = 4096
"""The size of generated key files in bytes (an integer)."""

KEY_FILE_SUFFIX = '.pw'
"""The filename extension of the key file that belongs to a container (a string)."""


class Configuration(collections.namedtuple('Configuration', (
        'filesystem_type', 'key_size', 'device_directory', 'mapper_directory',
        'sysfs_directory', 'mounts_file', 'overwrite'))):

    """
    Immutable configuration shared by the components of `luks-container-manager`.

    :ivar filesystem_type: The file system type passed to ``mkfs`` (a string).
    :ivar key_size: The size of generated key files in bytes (an integer).
    :ivar device_directory: The directory that contains the loop device nodes.
    :ivar mapper_directory: The directory where ``cryptsetup`` creates mappings.
    :ivar sysfs_directory: The mount point of sysfs.
    :ivar mounts_file: The live mount table.
    :ivar overwrite: :data:`True` to overwrite existing containers and key files.

    Use :func:`defaults()` to create an instance and :func:`_replace()` to
    derive a modified copy.
    """

    @classmethod
    def defaults(cls, **overrides):
        """
        Create a configuration based on the defaults.

        :param overrides: Any fields that should differ from the defaults.
        :returns: A :class:`Configuration` object.
        """
        options = dict(
            filesystem_type=DEFAULT_FILESYSTEM_TYPE,
            key_size=DEFAULT_KEY_SIZE,
            device_directory='/dev',
            mapper_directory='/dev/mapper',
            sysfs_directory='/sys',
            mounts_file='/proc/mounts',
            overwrite=False,
        )
        options.update(overrides)
        return cls(**options)


def key_file_for(filename):
    """
    Get the pathname of the key file that belongs to a container.

    :param filename: The pathname of the container file (a string).
    :returns: The pathname of the key file (a string).
    """
    return filename + KEY_FILE_SUFFIX
