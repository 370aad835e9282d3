import threading
import unittest
from unittest.mock import Mock

import timeout_decorator
from hamcrest import assert_that, calling, contains, contains_string, empty, has_length, instance_of, is_, none, \
    not_none, raises

from pathfinder.conduit.base_test import ScriptedConduit, ScriptedConduitFactory, debug_timeout, wait_for
from pathfinder.errors import NotConnectedError, OpenFailedError, ReadFailedError, WriteFailedError
from pathfinder.protocol.codec import CalibrationCommand, Reading
from pathfinder.registry import PortHandle
from pathfinder.registry_test import port_info
from pathfinder.session import ReadingCell, ScaleSession, SessionReadingEvent, SessionState, SessionStateEvent


class ReadingCellTest(unittest.TestCase):
    def test_holds_latest(self):
        sut = ReadingCell()
        assert_that(sut.get(), is_(none()))
        first, second = Reading('1'), Reading('2')
        sut.set(first)
        sut.set(second)
        assert_that(sut.get(), is_(second))
        sut.clear()
        assert_that(sut.get(), is_(none()))


class SessionTestCase(unittest.TestCase):
    framing = 'chunk'

    def setUp(self):
        self.handle = PortHandle(port_info('/dev/ttyTEST'))
        self.factory = ScriptedConduitFactory()
        self.sut = self.new_session()
        self.events = []
        self.sut.events += self.events.append

    def tearDown(self):
        if self.sut.connected:
            self.sut.close()

    def new_session(self):
        return ScaleSession(self.handle, self.factory, baudrate=9600, encoding='utf-8', framing=self.framing,
                            join_timeout=debug_timeout(2))

    @property
    def conduit(self) -> ScriptedConduit:
        return self.factory.last

    def states(self):
        return [e.state for e in self.events if isinstance(e, SessionStateEvent)]

    def readings(self):
        return [e.reading.value for e in self.events if isinstance(e, SessionReadingEvent)]

    def wait_for_readings(self, count):
        wait_for(lambda: len(self.readings()) >= count, message='%d readings' % count)

    def wait_for_state(self, state):
        wait_for(lambda: self.sut.state is state, message='state %s' % state.value)


class ScaleSessionOpenTest(SessionTestCase):

    def test_initial_state(self):
        assert_that(self.sut.state, is_(SessionState.IDLE))
        assert_that(self.sut.reading, is_(none()))
        assert_that(self.sut.failure, is_(none()))
        assert_that(self.sut.connected, is_(False))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_open(self):
        self.sut.open()
        assert_that(self.sut.state, is_(SessionState.CONNECTED))
        assert_that(self.factory.calls, is_([('/dev/ttyTEST', 9600)]))
        assert_that(self.handle.claimed, is_(True))
        assert_that(self.states(), contains(SessionState.CONNECTING, SessionState.CONNECTED))
        wait_for(self.conduit.reading.is_set, message='reader started')

    def test_open_failure_releases_the_handle(self):
        self.factory.error = OSError("permission denied")
        assert_that(calling(self.sut.open), raises(OpenFailedError, "permission denied"))
        assert_that(self.sut.state, is_(SessionState.FAILED))
        assert_that(self.sut.failure, is_(instance_of(OpenFailedError)))
        assert_that(self.handle.claimed, is_(False))
        assert_that(self.states(), contains(SessionState.CONNECTING, SessionState.FAILED))
        assert_that(self.sut.reading, is_(none()))

    def test_open_with_invalid_settings(self):
        self.factory.error = ValueError("invalid baudrate")
        assert_that(calling(self.sut.open), raises(OpenFailedError))
        assert_that(self.handle.claimed, is_(False))

    def test_conduit_not_open_is_closed_and_fails(self):
        conduit = ScriptedConduit()
        conduit._open = False
        factory = Mock(return_value=conduit)
        sut = ScaleSession(self.handle, factory)
        assert_that(calling(sut.open), raises(OpenFailedError))
        assert_that(conduit.closes, is_(1))
        assert_that(self.handle.claimed, is_(False))

    def test_busy_handle(self):
        other = object()
        self.handle.claim(other)
        assert_that(calling(self.sut.open), raises(OpenFailedError, "in use"))
        assert_that(self.factory.calls, empty())
        assert_that(self.sut.state, is_(SessionState.FAILED))
        assert_that(self.handle.release(other), is_(True))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_session_cannot_be_reopened(self):
        self.sut.open()
        self.sut.close()
        assert_that(calling(self.sut.open), raises(OpenFailedError, "new session"))
        assert_that(self.factory.conduits, has_length(1))


class ScaleSessionReadTest(SessionTestCase):
    def setUp(self):
        super().setUp()
        self.sut.open()

    @timeout_decorator.timeout(debug_timeout(5))
    def test_scale_output_becomes_reading(self):
        self.conduit.feed(b'12.34 kg\r\n')
        self.wait_for_readings(1)
        assert_that(self.sut.reading.value, is_('12.34 kg'))
        assert_that(self.sut.reading.captured_at, is_(not_none()))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_readings_in_arrival_order(self):
        for chunk in (b'1.00 kg\r\n', b'2.00 kg\r\n', b'3.00 kg\r\n'):
            self.conduit.feed(chunk)
        self.wait_for_readings(3)
        assert_that(self.readings(), is_(['1.00 kg', '2.00 kg', '3.00 kg']))
        assert_that(self.sut.reading.value, is_('3.00 kg'))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_empty_chunks_are_ignored(self):
        self.conduit.feed(b'')
        self.conduit.feed(b'5 kg')
        self.wait_for_readings(1)
        assert_that(self.readings(), is_(['5 kg']))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_end_of_stream_returns_to_idle(self):
        self.conduit.feed(b'7 kg')
        self.wait_for_readings(1)
        self.conduit.finish()
        self.wait_for_state(SessionState.IDLE)
        assert_that(self.states(), contains(SessionState.CONNECTING, SessionState.CONNECTED,
                                            SessionState.DISCONNECTING, SessionState.IDLE))
        assert_that(self.conduit.closes, is_(1))
        assert_that(self.handle.claimed, is_(False))
        assert_that(self.sut.failure, is_(none()))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_read_failure(self):
        self.conduit.feed(b'7 kg')
        self.wait_for_readings(1)
        self.conduit.fail(OSError("device reports readiness to read but returned no data"))
        self.wait_for_state(SessionState.FAILED)
        assert_that(self.sut.failure, is_(instance_of(ReadFailedError)))
        assert_that(self.sut.failure.message, contains_string("Reading error"))
        assert_that(self.states()[-2:], contains(SessionState.DISCONNECTING, SessionState.FAILED))
        assert_that(self.sut.reading.value, is_('7 kg'))
        assert_that(self.handle.claimed, is_(False))
        assert_that(self.conduit.closes, is_(1))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_reading_is_not_changed_after_read_failure(self):
        self.conduit.fail(OSError("unplugged"))
        self.wait_for_state(SessionState.FAILED)
        self.sut._chunk_received(b'99 kg')
        assert_that(self.sut.reading, is_(none()))
        assert_that(self.readings(), is_([]))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_close_after_read_failure_is_not_connected(self):
        self.conduit.fail(OSError("unplugged"))
        self.wait_for_state(SessionState.FAILED)
        assert_that(calling(self.sut.close), raises(NotConnectedError))
        assert_that(calling(self.sut.send_command).with_args(CalibrationCommand.ZERO), raises(NotConnectedError))


class ScaleSessionCloseTest(SessionTestCase):
    def setUp(self):
        super().setUp()
        self.sut.open()

    @timeout_decorator.timeout(debug_timeout(5))
    def test_close(self):
        self.conduit.feed(b'3 kg')
        self.wait_for_readings(1)
        self.sut.close()
        assert_that(self.sut.state, is_(SessionState.IDLE))
        assert_that(self.states()[-2:], contains(SessionState.DISCONNECTING, SessionState.IDLE))
        assert_that(self.sut.reading, is_(none()))
        assert_that(self.conduit.cancels, is_(1))
        assert_that(self.conduit.closes, is_(1))
        assert_that(self.handle.claimed, is_(False))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_close_stops_the_reader_before_closing(self):
        reader = self.sut._reader
        self.sut.close()
        assert_that(reader.finished, is_(True))
        assert_that(reader.background_thread.is_alive(), is_(False))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_close_twice(self):
        self.sut.close()
        assert_that(calling(self.sut.close), raises(NotConnectedError))
        assert_that(self.conduit.closes, is_(1))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_no_chunks_from_previous_connection_after_reconnect(self):
        first = self.conduit
        first.feed(b'1 kg')
        self.wait_for_readings(1)
        self.sut.close()
        first.feed(b'stale')

        second = self.new_session()
        events = []
        second.events += events.append
        second.open()
        self.factory.last.feed(b'2 kg')
        wait_for(lambda: second.reading is not None, message='reading on new session')
        assert_that(second.reading.value, is_('2 kg'))
        assert_that([e.reading.value for e in events if isinstance(e, SessionReadingEvent)], is_(['2 kg']))
        assert_that(self.readings(), is_(['1 kg']))
        second.close()

    @timeout_decorator.timeout(debug_timeout(5))
    def test_close_from_event_handler_on_reader_thread(self):
        closed = threading.Event()

        def on_event(event):
            if isinstance(event, SessionReadingEvent):
                self.sut.close()
                closed.set()

        self.sut.events += on_event
        self.conduit.feed(b'1 kg')
        closed.wait()
        assert_that(self.sut.state, is_(SessionState.IDLE))
        assert_that(self.conduit.closes, is_(1))


class ScaleSessionCommandTest(SessionTestCase):

    def test_command_when_not_connected(self):
        assert_that(calling(self.sut.send_command).with_args(CalibrationCommand.ZERO), raises(NotConnectedError))
        assert_that(self.factory.conduits, empty())

    @timeout_decorator.timeout(debug_timeout(5))
    def test_command_bytes(self):
        self.sut.open()
        expected = {
            CalibrationCommand.ZERO: bytes([0x5A, 0x0D, 0x0A]),
            CalibrationCommand.SPAN: bytes([0x53, 0x0D, 0x0A]),
            CalibrationCommand.FULL: bytes([0x43, 0x0D, 0x0A]),
        }
        for command, payload in expected.items():
            self.sut.send_command(command)
            assert_that(self.conduit.writes[-1], is_(payload))
        assert_that(self.conduit.wire_bytes, is_(b'Z\r\nS\r\nC\r\n'))
        assert_that(self.conduit.flushes, is_(3))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_unknown_command_is_rejected(self):
        self.sut.open()
        assert_that(calling(self.sut.send_command).with_args('Z\r\n'), raises(ValueError))
        assert_that(self.conduit.writes, empty())

    @timeout_decorator.timeout(debug_timeout(5))
    def test_command_after_close(self):
        self.sut.open()
        conduit = self.conduit
        self.sut.close()
        assert_that(calling(self.sut.send_command).with_args(CalibrationCommand.SPAN), raises(NotConnectedError))
        assert_that(conduit.writes, empty())

    @timeout_decorator.timeout(debug_timeout(5))
    def test_write_failure_keeps_session_connected(self):
        self.sut.open()
        self.conduit.write_error = OSError("write timeout")
        assert_that(calling(self.sut.send_command).with_args(CalibrationCommand.ZERO),
                    raises(WriteFailedError, "write timeout"))
        assert_that(self.sut.state, is_(SessionState.CONNECTED))
        self.conduit.feed(b'4 kg')
        self.wait_for_readings(1)
        self.conduit.write_error = None
        self.sut.send_command(CalibrationCommand.ZERO)
        assert_that(self.conduit.wire_bytes, is_(b'Z\r\n'))

    @timeout_decorator.timeout(debug_timeout(10))
    def test_concurrent_commands_do_not_interleave(self):
        self.sut.open()
        commands = [CalibrationCommand.ZERO, CalibrationCommand.SPAN, CalibrationCommand.FULL] * 4
        barrier = threading.Barrier(len(commands))
        errors = []

        def send(command):
            barrier.wait()
            try:
                self.sut.send_command(command)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=send, args=(c,)) for c in commands]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert_that(errors, empty())
        wire = self.conduit.wire_bytes
        assert_that(len(wire), is_(3 * len(commands)))
        frames = [wire[i:i + 3] for i in range(0, len(wire), 3)]
        assert_that(sorted(frames), is_(sorted(c.payload for c in commands)))
        assert_that(frames, is_(self.conduit.writes))


class LineFramingSessionTest(SessionTestCase):
    framing = 'line'

    @timeout_decorator.timeout(debug_timeout(5))
    def test_message_split_across_chunks(self):
        self.sut.open()
        self.conduit.feed(b'12.3')
        self.conduit.feed(b'4 kg\r\n8.')
        self.conduit.feed(b'00 kg\r\n')
        self.wait_for_readings(2)
        assert_that(self.readings(), is_(['12.34 kg', '8.00 kg']))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_partial_line_discarded_on_close(self):
        self.sut.open()
        self.conduit.feed(b'12.3')
        wait_for(lambda: self.conduit.reads >= 1, message='chunk read')
        self.sut.close()
        assert_that(self.sut._decoder.pending, is_(b''))


if __name__ == '__main__':  # pragma no cover
    unittest.main()
