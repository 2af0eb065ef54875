# Undo partially completed operations.
#
# Author: The luks-container-manager authors
# Last Change: October 19, 2026

"""
Undo partially completed operations.

Every resource acquired by :class:`~luks_container_manager.ContainerManager`
(a container file, a bound loop device, an open mapping) is paired with a
compensating action that is pushed onto a :class:`RollbackScope`. When the
:keyword:`with` statement ends because of an exception (including
:exc:`KeyboardInterrupt` and termination signals) the
compensating actions are run in reverse order. External commands that are
still running at that point are terminated first, so that no compensating
action races against (for example) a ``cryptsetup luksFormat`` that is still
writing to the loop device.
"""

# Standard library modules.
import signal
import threading

# External dependencies.
from humanfriendly import pluralize
from verboselogs import VerboseLogger

# Modules included in our package.
from luks_container_manager.exceptions import Interrupted

TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGHUP)
"""Signals that are translated into :exc:`.Interrupted` exceptions."""

ROLLBACK_SIGNALS = (signal.SIGINT,) + TERMINATION_SIGNALS
"""Signals that are ignored while compensating actions are running."""

# Initialize a logger for this module.
logger = VerboseLogger(__name__)


class CompensatingAction(object):

    """A function call that undoes the acquisition of a resource."""

    def __init__(self, function, *args, **kw):
        """
        Initialize a :class:`CompensatingAction` object.

        :param function: The callable to run.
        :param args: The positional arguments for `function`.
        :param kw: The keyword arguments for `function`.
        """
        self.function = function
        self.args = args
        self.kw = kw

    def __call__(self):
        """Run the compensating action."""
        return self.function(*self.args, **self.kw)

    def __repr__(self):
        """Render a human friendly representation (used in log messages)."""
        name = getattr(self.function, '__name__', repr(self.function))
        return '%s(%s)' % (name, ', '.join(map(repr, self.args)))


class RollbackScope(object):

    """Context manager that runs compensating actions when the :keyword:`with` statement fails."""

    def __init__(self, handle_signals=True, runner=None):
        """
        Initialize a :class:`RollbackScope` object.

        :param handle_signals: :data:`True` to translate ``SIGTERM`` and
                               ``SIGHUP`` into :exc:`.Interrupted` while the
                               scope is active, :data:`False` otherwise.
        :param runner: The :class:`~luks_container_manager.commands.CommandRunner`
                       whose in-flight commands are terminated on rollback
                       (optional).
        """
        self.actions = []
        self.handle_signals = handle_signals
        self.runner = runner
        self.saved_handlers = {}

    def push(self, function, *args, **kw):
        """
        Register a compensating action.

        :param function: The callable to run on rollback.
        :param args: The positional arguments for `function`.
        :param kw: The keyword arguments for `function`.
        :returns: A :class:`CompensatingAction` object that can be given
                  to :func:`discharge()`.
        """
        action = CompensatingAction(function, *args, **kw)
        logger.debug("Registering compensating action %r ..", action)
        self.actions.append(action)
        return action

    def discharge(self, action):
        """
        Run a compensating action now, as part of the normal flow.

        :param action: A :class:`CompensatingAction` returned by :func:`push()`.
        :raises: Any exception raised by the action, in which case the
                 action stays registered for rollback.
        """
        action()
        self.actions.remove(action)

    def commit(self):
        """Forget all compensating actions (the acquired resources are meant to stay)."""
        if self.actions:
            logger.debug("Committing %s.", pluralize(len(self.actions), "acquired resource"))
        self.actions = []

    def rollback(self):
        """
        Terminate in-flight commands and run the compensating actions in reverse order.

        Failures are logged and the remaining actions still run. Calling this
        method more than once is harmless because every action is removed from
        the stack before it runs.
        """
        with ignored_signals(ROLLBACK_SIGNALS):
            if self.runner:
                self.runner.terminate()
            if self.actions:
                logger.warning("Rolling back %s ..", pluralize(len(self.actions), "acquired resource"))
            while self.actions:
                action = self.actions.pop()
                logger.verbose("Running compensating action %r ..", action)
                try:
                    action()
                except Exception as e:
                    logger.error("Compensating action %r failed! (%s)", action, e)

    def __enter__(self):
        """Install the signal handlers (if enabled)."""
        if self.handle_signals and in_main_thread():
            for signal_number in TERMINATION_SIGNALS:
                self.saved_handlers[signal_number] = signal.signal(signal_number, raise_interrupted)
        return self

    def __exit__(self, exc_type=None, exc_value=None, traceback=None):
        """Roll back when the :keyword:`with` block raised an exception and restore signal handlers."""
        try:
            if exc_type is not None:
                self.rollback()
        finally:
            restore_handlers(self.saved_handlers)


class ignored_signals(object):

    """Context manager that ignores signals while the :keyword:`with` statement runs."""

    def __init__(self, signals):
        """
        Initialize the context manager.

        :param signals: An iterable of signal numbers.
        """
        self.signals = signals
        self.saved_handlers = {}

    def __enter__(self):
        """Ignore the signals (only possible in the main thread)."""
        if in_main_thread():
            for signal_number in self.signals:
                self.saved_handlers[signal_number] = signal.signal(signal_number, signal.SIG_IGN)

    def __exit__(self, *args):
        """Restore the previous signal handlers."""
        restore_handlers(self.saved_handlers)


def raise_interrupted(signal_number, frame):
    """Signal handler that raises :exc:`.Interrupted`."""
    raise Interrupted(signal_number)


def in_main_thread():
    """Check whether signal handlers can be installed from the current thread."""
    return threading.current_thread() is threading.main_thread()


def restore_handlers(saved_handlers):
    """
    Restore signal handlers saved by :func:`signal.signal()`.

    :param saved_handlers: A dictionary with signal numbers and handlers. The
                           dictionary is emptied.
    """
    while saved_handlers:
        signal_number, handler = saved_handlers.popitem()
        # Handlers that weren't installed from Python are reported as None.
        signal.signal(signal_number, signal.SIG_DFL if handler is None else handler)
