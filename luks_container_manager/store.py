# Container files and key files.
#
# Author: The luks-container-manager authors
# Last Change: October 19, 2026

"""
Container files and key files.

New container files are filled with random data up front (they're never
sparse) so that the used and unused parts of the encrypted volume can't be
told apart from the outside.
"""

# Standard library modules.
import numbers
import os

# External dependencies.
from humanfriendly import Timer, format_size
from verboselogs import VerboseLogger

# Modules included in our package.
from luks_container_manager.config import Configuration
from luks_container_manager.exceptions import AlreadyExists, ContainerIOError, InvalidSize

CHUNK_SIZE = 1024 * 1024
"""The number of random bytes written to a container file at once (an integer)."""

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


class ContainerStore(object):

    """Create and remove container files and key files."""

    def __init__(self, config=None):
        """
        Initialize a :class:`ContainerStore` object.

        :param config: A :class:`~luks_container_manager.config.Configuration` object.
        """
        self.config = config or Configuration.defaults()

    def create_backing(self, filename, size, overwrite=False):
        """
        Create a container file filled with random data.

        :param filename: The pathname of the container file (a string).
        :param size: The size of the container file in bytes (a positive integer).
        :param overwrite: :data:`True` to overwrite an existing file,
                          :data:`False` to refuse.
        :raises: :exc:`.InvalidSize` when `size` isn't a positive integer,
                 :exc:`.AlreadyExists` when the file exists and `overwrite` is
                 :data:`False`, :exc:`.ContainerIOError` when writing fails.

        When writing fails or is interrupted the partially written file is
        removed before the exception propagates.
        """
        if isinstance(size, bool) or not isinstance(size, numbers.Integral) or size <= 0:
            raise InvalidSize("Invalid container size %r! (expected a positive integer)" % (size,))
        if os.path.exists(filename) and not overwrite:
            raise AlreadyExists("Container file %s already exists! (use overwrite to replace it)" % filename)
        logger.info("Creating %s container file %s ..", format_size(size, binary=True), filename)
        timer = Timer()
        try:
            with open(filename, 'wb') as handle:
                remaining = size
                while remaining > 0:
                    chunk = os.urandom(min(remaining, CHUNK_SIZE))
                    handle.write(chunk)
                    remaining -= len(chunk)
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as e:
            self.remove(filename)
            raise ContainerIOError("Failed to create container file %s! (%s)" % (filename, e))
        except BaseException:
            self.remove(filename)
            raise
        logger.verbose("Filled %s with random data in %s.", filename, timer)

    def generate_credential(self, filename, overwrite=False):
        """
        Generate a key file with random contents.

        :param filename: The pathname of the key file (a string).
        :param overwrite: :data:`True` to replace an existing key file,
                          :data:`False` to keep it.
        :returns: :data:`True` if a key file was generated, :data:`False` if
                  an existing key file was kept.
        :raises: :exc:`.ContainerIOError` when writing fails.

        The key file is created readable by its owner only and its contents
        are never logged.
        """
        if os.path.exists(filename):
            if not overwrite:
                logger.verbose("Keeping existing key file %s.", filename)
                return False
            logger.info("Replacing existing key file %s ..", filename)
            self.remove(filename)
        else:
            logger.info("Generating key file %s ..", filename)
        created = False
        try:
            fd = os.open(filename, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o400)
            created = True
            with os.fdopen(fd, 'wb') as handle:
                handle.write(os.urandom(self.config.key_size))
        except OSError as e:
            # A file that appeared after the existence check belongs to someone else.
            if created:
                self.remove(filename)
            raise ContainerIOError("Failed to generate key file %s! (%s)" % (filename, e))
        return True

    def remove(self, filename):
        """
        Remove a container file or key file (if it exists).

        :param filename: The pathname of the file (a string).
        """
        if os.path.isfile(filename):
            logger.warning("Deleting %s ..", filename)
            os.unlink(filename)
