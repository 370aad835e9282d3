"""
A terminal observer for the scale. Shows readings as they arrive and sends the
calibration commands typed on standard input.
"""
import argparse
import logging
import sys
import threading
from queue import Empty, Queue

from configobj import ConfigObjError

from pathfinder import settings
from pathfinder.conduit.serial_conduit import describe_port
from pathfinder.connector import ScaleConnector, SessionStatus
from pathfinder.errors import SessionError, UnsupportedPlatformError
from pathfinder.protocol.codec import CalibrationCommand
from pathfinder.registry import default_registry, named_selector
from pathfinder.session import SessionState
from pathfinder.support.events import QueuedEventSource

logger = logging.getLogger(__name__)

quit_commands = ('disconnect', 'quit', 'exit', 'q')
help_text = "Commands: zero, span, full (calibration), disconnect"


def build_parser():
    parser = argparse.ArgumentParser(prog='pathfinder-console',
                                     description='Avery Pathfinder 6140 readings and calibration.')
    parser.add_argument('--port', help='serial device to use, e.g. /dev/ttyUSB0 or COM3')
    parser.add_argument('--list', action='store_true', help='list the serial ports and exit')
    parser.add_argument('--framing', choices=('chunk', 'line'), help='how received data is split into readings')
    parser.add_argument('--baudrate', type=int, help='line speed, default %d' % settings.baudrate)
    parser.add_argument('-v', '--verbose', action='store_true', help='log debug output')
    return parser


def prompt_selector(stdin, out):
    """ Creates a selector that asks which port to use when there is more than one. """
    def select(ports):
        if not ports:
            print("No serial ports found.", file=out)
            return None
        if len(ports) == 1:
            return ports[0]
        for index, port in enumerate(ports, 1):
            print("%d) %s" % (index, describe_port(port)), file=out)
        print("Port number (blank to cancel): ", end='', file=out, flush=True)
        line = stdin.readline()
        if not line:
            raise EOFError
        if not line.strip():
            return None
        try:
            index = int(line)
        except ValueError:
            index = 0
        if not 1 <= index <= len(ports):
            print("No such port: %s" % line.strip(), file=out)
            return None
        return ports[index - 1]
    return select


class ConsoleView:
    """ Prints what changed between successive status snapshots. """

    def __init__(self, out):
        self.out = out
        self.previous = SessionStatus()

    def __call__(self, status: SessionStatus):
        previous, self.previous = self.previous, status
        if status.state is not previous.state:
            self._print("State: %s" % status.state.value)
        if status.reading is not None and status.reading is not previous.reading:
            self._print("Value: %s  Last update: %s" % (status.reading.value, status.reading.timestamp))
        if status.error is not None and status.error != previous.error:
            self._print("Error: %s" % status.error.message)

    def _print(self, text):
        print(text, file=self.out, flush=True)


class ConsoleCommands:
    """ Interprets the lines typed by the user. """

    def __init__(self, connector: ScaleConnector, out):
        self.connector = connector
        self.out = out

    def handle(self, line) -> bool:
        """
        :return: False when the user asked to disconnect
        """
        word = line.strip().lower()
        if not word:
            return True
        if word in quit_commands:
            return False
        if word in ('help', '?'):
            print(help_text, file=self.out)
            return True
        try:
            command = CalibrationCommand.parse(word)
        except ValueError:
            print("Unknown command %r. %s" % (word, help_text), file=self.out)
            return True
        self.connector.send_command(command)
        return True


def read_lines(stream, lines: Queue):
    for line in stream:
        lines.put(line)
    lines.put(None)


def run(connector: ScaleConnector, stdin, out, poll_interval=0.1) -> int:
    """
    Connects, then shows readings and handles commands until the user disconnects,
    input ends or the session ends.
    :return: the process exit status
    """
    events = QueuedEventSource()
    events += ConsoleView(out)
    connector.events += events.fire
    try:
        if not connector.connect():
            return 1
        print(help_text, file=out)
        lines = Queue()
        threading.Thread(target=read_lines, args=(stdin, lines), name='console-input', daemon=True).start()
        commands = ConsoleCommands(connector, out)
        while connector.connected:
            events.publish()
            try:
                line = lines.get(timeout=poll_interval)
            except Empty:
                continue
            if line is None or not commands.handle(line):
                break
        if connector.connected:
            connector.disconnect()
        return 1 if connector.state is SessionState.FAILED else 0
    finally:
        events.publish()
        connector.events -= events.fire


def main(argv=None, stdin=None, out=None):
    stdin = stdin or sys.stdin
    out = out or sys.stdout
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    try:
        settings.configure()
    except ConfigObjError as e:
        print("Invalid configuration: %s" % e, file=out)
        return 2
    if args.framing:
        settings.framing = args.framing
    if args.baudrate:
        settings.baudrate = args.baudrate

    selector = named_selector(args.port) if args.port else prompt_selector(stdin, out)
    registry = default_registry(selector, settings.recognised_only, settings.read_timeout, settings.write_timeout,
                                settings.chunk_gap)
    if not registry.supported:
        print(UnsupportedPlatformError().message, file=out)
        return 2

    if args.list:
        try:
            ports = registry.available_ports()
        except SessionError as e:
            print(e.message, file=out)
            return 1
        for port in ports:
            print(describe_port(port), file=out)
        return 0

    connector = ScaleConnector(registry)
    try:
        return run(connector, stdin, out)
    except KeyboardInterrupt:
        if connector.connected:
            connector.disconnect()
        return 130


if __name__ == '__main__':  # pragma no cover
    sys.exit(main())
