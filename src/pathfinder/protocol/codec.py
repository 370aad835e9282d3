"""
Encodes calibration commands and decodes the text the scale streams back.

The Pathfinder 6140 speaks plain ASCII: each command is a single letter followed by
CR LF, and weight readings arrive as text.
"""
import logging
from datetime import datetime
from enum import Enum

from pathfinder.support.mixins import CommonEqualityMixin, StringerMixin

logger = logging.getLogger(__name__)


class CalibrationCommand(Enum):
    """ The closed set of calibration commands, each with its exact wire bytes. """
    ZERO = b'Z\r\n'
    SPAN = b'S\r\n'
    FULL = b'C\r\n'

    @property
    def payload(self) -> bytes:
        return self.value

    @classmethod
    def parse(cls, name):
        """
        Looks up a command by name.
        >>> CalibrationCommand.parse('Zero')
        <CalibrationCommand.ZERO: b'Z\\r\\n'>
        """
        if isinstance(name, cls):
            return name
        try:
            return cls[str(name).strip().upper()]
        except KeyError:
            raise ValueError("unknown calibration command %r" % name) from None


def encode_command(command: CalibrationCommand) -> bytes:
    """ retrieves the bytes to send for a command. Only members of the command table are accepted. """
    if not isinstance(command, CalibrationCommand):
        raise ValueError("not a calibration command: %r" % (command,))
    return command.payload


class Reading(CommonEqualityMixin, StringerMixin):
    """ A decoded output from the scale and the time it was captured. """

    def __init__(self, raw_text: str, captured_at: datetime=None):
        self.raw_text = raw_text
        self.captured_at = captured_at or datetime.now()

    @property
    def value(self) -> str:
        return self.raw_text

    @property
    def timestamp(self) -> str:
        """ the local time of capture, formatted for display. """
        return self.captured_at.strftime('%X')

    def to_dict(self):
        return {'value': self.value, 'timestamp': self.timestamp}


class ChunkDecoder:
    """ Treats every chunk delivered by the port as one complete message. """

    def __init__(self, encoding='utf-8'):
        self.encoding = encoding

    def _text(self, data: bytes) -> str:
        return bytes(data).decode(self.encoding, errors='replace').strip()

    def decode(self, chunk: bytes) -> list:
        """
        >>> ChunkDecoder().decode(b' 12.34 kg\\r\\n')
        ['12.34 kg']
        """
        return [self._text(chunk)]

    def reset(self):
        """ discards any partially received message. """


class LineDecoder(ChunkDecoder):
    """ Buffers chunks until a line feed, so a message split across chunks
        is still published as a single message. """

    terminator = b'\n'

    def __init__(self, encoding='utf-8'):
        super().__init__(encoding)
        self._buffer = bytearray()

    def decode(self, chunk: bytes) -> list:
        """
        >>> d = LineDecoder()
        >>> d.decode(b'12.3'), d.decode(b'4 kg\\r\\n5.00 kg\\r\\n6')
        ([], ['12.34 kg', '5.00 kg'])
        """
        self._buffer.extend(chunk)
        *lines, rest = self._buffer.split(self.terminator)
        self._buffer = bytearray(rest)
        return [self._text(line) for line in lines]

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)

    def reset(self):
        if self._buffer:
            logger.debug("discarding partial message %r", bytes(self._buffer))
        self._buffer = bytearray()


decoders = {
    'chunk': ChunkDecoder,
    'line': LineDecoder
}


def make_decoder(framing='chunk', encoding='utf-8') -> ChunkDecoder:
    try:
        factory = decoders[framing]
    except KeyError:
        raise ValueError("unknown framing %r, expected one of %s" % (framing, ', '.join(sorted(decoders))))
    return factory(encoding)
