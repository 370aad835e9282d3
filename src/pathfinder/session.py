"""
The scale session: one open-to-closed lifecycle of a serial connection to the scale.

A session opens the port, runs a reader thread that turns each chunk received into a
Reading, and writes calibration commands on the caller's thread. Reads and writes use
independent sides of the conduit. Writes are serialized by a lock so that concurrent
commands reach the wire whole.

A session is used once. After it is closed or fails, a new session is created for the
next connection.
"""
import logging
import threading
from datetime import datetime
from enum import Enum

from pathfinder import settings
from pathfinder.conduit.base import Conduit, ConduitFactory
from pathfinder.errors import NotConnectedError, OpenFailedError, ReadFailedError, SessionError, \
    WriteFailedError
from pathfinder.protocol.codec import CalibrationCommand, Reading, encode_command, make_decoder
from pathfinder.protocol.loop import AsyncLoop
from pathfinder.registry import PortHandle
from pathfinder.support.events import EventSource

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = 'Idle'
    CONNECTING = 'Connecting'
    CONNECTED = 'Connected'
    DISCONNECTING = 'Disconnecting'
    FAILED = 'Failed'


class SessionEvent:
    """ base class for session events. """
    def __init__(self, session):
        self.session = session


class SessionStateEvent(SessionEvent):
    """ The session changed state. failure is set when the new state is FAILED. """
    def __init__(self, session, state: SessionState, failure: SessionError=None):
        super().__init__(session)
        self.state = state
        self.failure = failure


class SessionReadingEvent(SessionEvent):
    """ A new reading was decoded. """
    def __init__(self, session, reading: Reading):
        super().__init__(session)
        self.reading = reading


class ReadingCell:
    """ Holds the latest reading. Each new reading replaces the previous one. """

    def __init__(self):
        self._reading = None
        self._lock = threading.Lock()

    def get(self) -> Reading:
        with self._lock:
            return self._reading

    def set(self, reading: Reading):
        with self._lock:
            self._reading = reading

    def clear(self):
        self.set(None)


class SessionReadLoop(AsyncLoop):
    """
    Reads chunks from the session's conduit on a background thread until the stream ends,
    a read fails, or the session asks it to stop.
    """

    def __init__(self, session, conduit: Conduit):
        super().__init__(name='scale-reader %s' % session.handle.device)
        self.session = session
        self.conduit = conduit
        self.failure = None
        self.finished = False

    def loop(self):
        chunk = self.conduit.read_chunk()
        if chunk is None:
            return False
        if chunk and self.running():
            self.session._chunk_received(chunk)
        return True

    def exception_handler(self, e):
        if not self.running():
            logger.debug("read ended during disconnect: %s", e)
            return
        logger.error("read from %s failed: %s", self.session.handle.device, e)
        if logger.isEnabledFor(logging.DEBUG):
            logger.exception(e)
        self.failure = ReadFailedError("Reading error: %s" % e)

    def shutdown(self):
        self.finished = True
        if self.running():
            self.session._reader_ended(self.failure)


class ScaleSession:
    """
    Owns one serial connection to the scale.

    :param handle: the port to open. The handle is claimed while the session is open.
    :param conduit_factory: opens a conduit, called with the device name and baud rate
    :param baudrate, encoding, framing: override the values from pathfinder.settings
    """

    def __init__(self, handle: PortHandle, conduit_factory: ConduitFactory, baudrate=None, encoding=None,
                 framing=None, join_timeout=None):
        self.handle = handle
        self.conduit_factory = conduit_factory
        self.baudrate = baudrate or settings.baudrate
        self.join_timeout = join_timeout if join_timeout is not None else settings.join_timeout
        self.events = EventSource()
        self._decoder = make_decoder(framing or settings.framing, encoding or settings.encoding)
        self._reading = ReadingCell()
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._state = SessionState.IDLE
        self._failure = None
        self._conduit = None
        self._reader = None
        self._used = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def failure(self) -> SessionError:
        """ the reason for the FAILED state, or None """
        return self._failure

    @property
    def reading(self) -> Reading:
        """ the latest reading, or None """
        return self._reading.get()

    @property
    def connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    def _change_state(self, state, failure=None):
        """ sets the state. The caller holds the lock, and fires the returned event after releasing it. """
        self._state = state
        self._failure = failure
        return SessionStateEvent(self, state, failure)

    def _fire(self, event):
        self.events.fire(event)

    def open(self):
        """
        Opens the port and starts reading.
        :raises OpenFailedError: if the port is in use or cannot be opened. The session is then FAILED.
        """
        with self._lock:
            if self._used:
                raise OpenFailedError("A session cannot be reopened; start a new session")
            self._used = True
            event = self._change_state(SessionState.CONNECTING)
        self._fire(event)

        try:
            self.handle.claim(self)
            conduit = self._open_conduit()
        except OpenFailedError as e:
            with self._lock:
                event = self._change_state(SessionState.FAILED, e)
            self._fire(event)
            raise

        with self._lock:
            self._conduit = conduit
            reader = self._reader = SessionReadLoop(self, conduit)
            event = self._change_state(SessionState.CONNECTED)
        logger.info("connected to %s at %d baud", self.handle.device, self.baudrate)
        self._fire(event)
        reader.start()

    def _open_conduit(self) -> Conduit:
        """ opens the conduit, releasing the handle if that fails. """
        device = self.handle.device
        try:
            conduit = self.conduit_factory(device, self.baudrate)
        except (OSError, ValueError) as e:
            self.handle.release(self)
            raise OpenFailedError("Could not open %s: %s" % (device, e)) from e
        if not conduit.open:
            self._close_quietly(conduit)
            self.handle.release(self)
            raise OpenFailedError("Could not open %s" % device)
        return conduit

    def _close_quietly(self, conduit):
        try:
            conduit.close()
        except (OSError, ValueError) as e:
            logger.warning("error closing %s: %s", self.handle.device, e)

    def _chunk_received(self, chunk: bytes):
        """ called on the reader thread with each chunk. """
        logger.debug("received %r", chunk)
        for text in self._decoder.decode(chunk):
            reading = Reading(text, datetime.now())
            with self._lock:
                if self._state is not SessionState.CONNECTED:
                    return
                self._reading.set(reading)
            self._fire(SessionReadingEvent(self, reading))

    def _reader_ended(self, failure):
        """ called on the reader thread when the stream ends or a read fails. """
        with self._lock:
            if self._state is not SessionState.CONNECTED:
                return
            self._reader = None
            event = self._change_state(SessionState.DISCONNECTING)
        self._fire(event)
        self._release()
        with self._lock:
            if failure is None:
                logger.info("%s closed the connection", self.handle.device)
                event = self._change_state(SessionState.IDLE)
            else:
                event = self._change_state(SessionState.FAILED, failure)
        self._fire(event)

    def _stop_reader(self):
        with self._lock:
            reader, self._reader = self._reader, None
        if reader is None:
            return
        reader.request_stop()
        try:
            reader.conduit.cancel_read()
        except (OSError, ValueError) as e:
            logger.debug("cancel read failed: %s", e)
        if reader.on_background_thread():
            return
        if not reader.stop(self.join_timeout):
            logger.warning("reader for %s did not stop within %ss; closing the port under it",
                           self.handle.device, self.join_timeout)

    def _release(self):
        """ closes the conduit and releases the handle. Only the first call has any effect. """
        with self._lock:
            conduit, self._conduit = self._conduit, None
        if conduit is None:
            return
        with self._write_lock:
            self._close_quietly(conduit)
        self._decoder.reset()
        self.handle.release(self)

    def close(self):
        """
        Stops reading, closes the port and clears the reading.
        :raises NotConnectedError: if the session is not connected.
        """
        with self._lock:
            if self._state is not SessionState.CONNECTED:
                raise NotConnectedError()
            event = self._change_state(SessionState.DISCONNECTING)
        self._fire(event)
        self._stop_reader()
        self._release()
        with self._lock:
            self._reading.clear()
            event = self._change_state(SessionState.IDLE)
        logger.info("disconnected from %s", self.handle.device)
        self._fire(event)

    def send_command(self, command: CalibrationCommand):
        """
        Writes a calibration command. Concurrent calls are written one after another.
        A write failure does not end the session.
        :raises NotConnectedError: if the session is not connected. Nothing is written.
        :raises WriteFailedError: if the command could not be written.
        """
        payload = encode_command(command)
        with self._lock:
            if self._state is not SessionState.CONNECTED:
                raise NotConnectedError()
            conduit = self._conduit
        with self._write_lock:
            if self._conduit is not conduit:
                raise NotConnectedError()
            try:
                conduit.write(payload)
                conduit.flush()
            except (OSError, ValueError) as e:
                logger.warning("%s command to %s failed: %s", command.name, self.handle.device, e)
                raise WriteFailedError("Command failed: %s" % e) from e
        logger.debug("sent %s command %r", command.name, payload)
