# Run external commands that can be stopped on rollback.
#
# Author: The luks-container-manager authors
# Last Change: October 19, 2026

"""
Run external commands that can be stopped on rollback.

The components of `luks-container-manager` don't call
:func:`executor.execute()` directly, instead they run their commands through
a :class:`CommandRunner`. The runner remembers which commands are still in
flight when an exception (like :exc:`KeyboardInterrupt` or
:exc:`.Interrupted`) unwinds the stack, so that
:class:`~luks_container_manager.rollback.RollbackScope` can terminate them
before it starts undoing their work.
"""

# External dependencies.
from executor import ExternalCommandFailed, quote
from linux_utils import coerce_context
from verboselogs import VerboseLogger

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


class CommandRunner(object):

    """Run external commands in an execution context and keep track of the ones in flight."""

    def __init__(self, context=None):
        """
        Initialize a :class:`CommandRunner` object.

        :param context: An execution context created by :mod:`executor.contexts`
                        (defaults to :class:`executor.contexts.LocalContext`).
        """
        self.context = coerce_context(context)
        self.running = []

    def execute(self, *command, **options):
        """
        Run an external command and wait for it to finish.

        :param command: The command to run (a tuple of strings).
        :param options: Keyword arguments for :class:`executor.ExternalCommand`.
        :returns: The output of the command (when `capture` is :data:`True`)
                  or :data:`True` when it succeeded, :data:`False` otherwise.
        :raises: :exc:`executor.ExternalCommandFailed` when the command fails
                 and `check` isn't :data:`False`.

        When the wait is interrupted by an exception other than
        :exc:`~executor.ExternalCommandFailed` the command stays registered
        in :attr:`running` until :func:`terminate()` is called.
        """
        cmd = self.context.start(*command, **options)
        self.running.append(cmd)
        try:
            cmd.wait()
        except ExternalCommandFailed:
            self.running.remove(cmd)
            raise
        self.running.remove(cmd)
        return cmd.output if options.get('capture') else cmd.succeeded

    def capture(self, *command, **options):
        """Run an external command and return its output (see :func:`execute()`)."""
        options['capture'] = True
        return self.execute(*command, **options)

    def test(self, *command, **options):
        """Run an external command and return :data:`True` when it succeeded (see :func:`execute()`)."""
        options['check'] = False
        return self.execute(*command, **options)

    def terminate(self):
        """Terminate the commands that are still running (in reverse order of starting them)."""
        while self.running:
            cmd = self.running.pop()
            if cmd.is_running:
                logger.warning("Terminating interrupted command: %s", quote(cmd.command_line))
                cmd.terminate()
