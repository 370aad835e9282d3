"""
The entry points an observer, such as a user interface, uses to work with the scale.

The connector creates a new ScaleSession for each connection and reports the session's state,
latest reading and latest error to subscribers of `events` as SessionStatus snapshots.
Failures are reported to subscribers and never raised to the caller.
"""
import collections
import logging
import threading

from pathfinder.errors import NotConnectedError, SessionError
from pathfinder.protocol.codec import CalibrationCommand, Reading
from pathfinder.registry import PortRegistry
from pathfinder.session import ScaleSession, SessionReadingEvent, SessionState, SessionStateEvent
from pathfinder.support.events import EventSource
from pathfinder.support.mixins import CommonEqualityMixin, StringerMixin

logger = logging.getLogger(__name__)


class SessionStatus(CommonEqualityMixin, StringerMixin):
    """ A snapshot of what an observer renders: the state, the latest reading and the latest error. """

    def __init__(self, state=SessionState.IDLE, reading: Reading=None, error: SessionError=None):
        self.state = state
        self.reading = reading
        self.error = error

    def replace(self, **changes):
        values = dict(self.__dict__)
        values.update(changes)
        return SessionStatus(**values)

    def to_dict(self):
        return {
            'state': self.state.value,
            'reading': self.reading.to_dict() if self.reading else None,
            'error': self.error.to_dict() if self.error else None
        }


class ScaleConnector:
    """
    Connects to the scale through ports chosen from a PortRegistry.

    :param registry: provides the port to connect to
    :param conduit_factory: opens the port. Defaults to the registry's serial capability.
    :param session_factory: creates a session for a port handle and conduit factory
    """

    def __init__(self, registry: PortRegistry, conduit_factory=None, session_factory=ScaleSession):
        self.registry = registry
        self.events = EventSource()
        self.conduit_factory = conduit_factory
        self.session_factory = session_factory
        self._session = None
        self._lock = threading.RLock()
        self._status_lock = threading.RLock()
        self._status = SessionStatus()
        self._pending = collections.deque()
        self._dispatching = False

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def state(self) -> SessionState:
        return self._status.state

    @property
    def last_reading(self) -> Reading:
        return self._status.reading

    @property
    def last_error(self) -> SessionError:
        return self._status.error

    @property
    def connected(self) -> bool:
        session = self._session
        return session is not None and session.connected

    @property
    def session(self) -> ScaleSession:
        return self._session

    def _update(self, **changes):
        """
        applies changes to the status and notifies subscribers if it differs.
        Subscribers are called in the order the changes were made and never under the status lock.
        A change made while another thread is notifying is delivered by that thread.
        """
        with self._status_lock:
            old = self._status
            status = old.replace(**changes)
            if status.state is old.state and status.reading is old.reading and status.error == old.error:
                return
            self._status = status
            self._pending.append(status)
            if self._dispatching:
                return
            self._dispatching = True
        self._dispatch()

    def _dispatch(self):
        while True:
            with self._status_lock:
                if not self._pending:
                    self._dispatching = False
                    return
                status = self._pending.popleft()
            try:
                self.events.fire(status)
            except BaseException:
                with self._status_lock:
                    self._dispatching = False
                raise

    def _session_event(self, event):
        if event.session is not self._session:
            return
        if isinstance(event, SessionReadingEvent):
            self._update(reading=event.reading)
        elif isinstance(event, SessionStateEvent):
            changes = dict(state=event.state, reading=event.session.reading)
            if event.failure is not None:
                changes['error'] = event.failure
            self._update(**changes)

    def _detach(self):
        session, self._session = self._session, None
        if session is not None:
            session.events -= self._session_event

    def connect(self) -> bool:
        """
        Requests a port and opens a new session on it.
        Does nothing if a session is already connected.
        :return: True if connected
        """
        with self._lock:
            session = self._session
            if session is not None and session.state in (SessionState.CONNECTING, SessionState.CONNECTED):
                return True
            self._detach()
            self._update(state=SessionState.CONNECTING, reading=None, error=None)
            try:
                handle = self.registry.request_port()
            except SessionError as e:
                logger.info("no port to connect to: %s", e)
                self._update(state=SessionState.FAILED, error=e)
                return False

            session = self.session_factory(handle, self.conduit_factory or self.registry.capability)
            session.events += self._session_event
            self._session = session
            try:
                session.open()
            except SessionError as e:
                logger.info("connect to %s failed: %s", handle.device, e)
                self._update(state=SessionState.FAILED, error=e)
                return False
            return True

    def send_command(self, command) -> bool:
        """
        Sends a calibration command to the scale.
        :param command: a CalibrationCommand, or its name
        :return: True if the command was written
        :raises ValueError: if command does not name a calibration command
        """
        command = CalibrationCommand.parse(command)
        session = self._session
        try:
            if session is None:
                raise NotConnectedError()
            session.send_command(command)
        except SessionError as e:
            self._update(error=e)
            return False
        self._update(error=None)
        return True

    def disconnect(self) -> bool:
        """
        Closes the current session.
        :return: True if a connected session was closed
        """
        with self._lock:
            session = self._session
        try:
            if session is None:
                raise NotConnectedError()
            session.close()
        except SessionError as e:
            self._update(error=e)
            return False
        self._update(error=None)
        return True

    def clear_error(self):
        self._update(error=None)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        if self.connected:
            self.disconnect()
