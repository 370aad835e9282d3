"""
Implements a conduit over a serial port, and the platform's serial capability:
enumerating ports and opening them.
"""

import importlib
import logging
import re
import time

import serial

from pathfinder.conduit.base import Conduit, ConduitFactory
from pathfinder.conduit.discovery import PolledResourceDiscovery

logger = logging.getLogger(__name__)

# seconds of silence that end a burst of data. USB adapters deliver in packets up to 16ms apart.
default_chunk_gap = 0.02
max_chunk_size = 4096


class SerialConduit(Conduit):
    """
    A conduit that provides comms via a serial port.
    A chunk is one burst of data from the device: it ends at a line feed, or when
    nothing more arrives within chunk_gap seconds.
    """

    def __init__(self, ser: serial.Serial, chunk_gap=default_chunk_gap):
        self.ser = ser
        self.chunk_gap = chunk_gap

    @property
    def target(self):
        return self.ser

    @property
    def open(self) -> bool:
        return self.ser.is_open

    def read_chunk(self):
        """ blocks for up to the port timeout for the first byte, then reads the rest of the burst. """
        ser = self.ser
        if not ser.is_open:
            return None
        chunk = bytearray(ser.read(1))
        while chunk and not chunk.endswith(b'\n') and len(chunk) < max_chunk_size:
            waiting = ser.in_waiting
            if not waiting:
                time.sleep(self.chunk_gap)
                waiting = ser.in_waiting
                if not waiting:
                    break
            chunk.extend(ser.read(min(waiting, max_chunk_size - len(chunk))))
        return bytes(chunk)

    def cancel_read(self):
        cancel = getattr(self.ser, 'cancel_read', None)
        if cancel is not None:
            cancel()

    def write(self, data: bytes):
        return self.ser.write(data)

    def flush(self):
        self.ser.flush()

    def close(self):
        self.ser.close()


def open_serial_conduit(device, baudrate, timeout=None, write_timeout=None,
                        chunk_gap=default_chunk_gap) -> SerialConduit:
    """
    Opens the named serial port and discards anything received before it was opened.
    :param timeout: how long a read waits for the first byte, in seconds. None waits forever.
    :param write_timeout: how long a write may block, in seconds.
    :param chunk_gap: seconds of silence that end a chunk.
    """
    ser = serial.Serial(device, baudrate, timeout=timeout, write_timeout=write_timeout)
    try:
        ser.reset_input_buffer()
    except OSError:
        ser.close()
        raise
    return SerialConduit(ser, chunk_gap)


# USB to RS-232 adapters commonly fitted to Pathfinder indicators
usb_serial_adapters = {
    r"USB VID\:PID=0403\:6001.*": "FTDI FT232",
    r"USB VID\:PID=067B\:2303.*": "Prolific PL2303",
    r"USB VID\:PID=1A86\:7523.*": "WCH CH340",
    r"USB VID\:PID=10C4\:EA60.*": "Silicon Labs CP210x",
}


# 'USB VID:PID=0403:6001 SER=A50285BI LOCATION=1-1.2'
def matches(text, regex):
    """
    >>> bool(matches("USB VID:PID=067b:2303 LOCATION=1-1", r"USB VID\\:PID=067B\\:2303.*"))
    True
    >>> bool(matches("n/a", r"USB VID\\:PID=067B\\:2303.*"))
    False
    """
    return re.match(regex, text or '', flags=re.IGNORECASE)


def recognised_adapter(p):
    """
    Names the USB serial adapter for a port, from the port's hardware id.
    :param p: a (device, description, hwid) tuple or ListPortInfo
    :return: the adapter name or None
    """
    device, description, hwid = p
    for pattern, name in usb_serial_adapters.items():
        if matches(hwid, pattern):
            return name
    return None


def is_recognised_device(p):
    """
    >>> is_recognised_device(("/dev/ttyUSB0", "FT232R", "USB VID:PID=0403:6001 SER=A50285BI"))
    True
    """
    return recognised_adapter(p) is not None


def find_recognised_device_ports(ports):
    for p in ports:
        if is_recognised_device(p):
            yield p


def describe_port(p):
    device, description, hwid = p
    adapter = recognised_adapter(p)
    text = "%s - %s" % (device, description)
    return text + (" [%s]" % adapter if adapter else "")


class SerialCapability(ConduitFactory):
    """
    The host's serial support: lists the ports present and opens them.
    """

    def __init__(self, list_ports, timeout=None, write_timeout=None, chunk_gap=default_chunk_gap):
        """
        :param list_ports: the pyserial port enumeration module
        :param timeout: read timeout applied to opened ports
        :param write_timeout: write timeout applied to opened ports
        :param chunk_gap: seconds of silence that end a chunk read from opened ports
        """
        self.list_ports = list_ports
        self.timeout = timeout
        self.write_timeout = write_timeout
        self.chunk_gap = chunk_gap

    def ports(self) -> tuple:
        """ a snapshot of the ports present. """
        return tuple(self.list_ports.comports())

    def __call__(self, device, baudrate, **kwargs) -> SerialConduit:
        kwargs.setdefault('timeout', self.timeout)
        kwargs.setdefault('write_timeout', self.write_timeout)
        kwargs.setdefault('chunk_gap', self.chunk_gap)
        return open_serial_conduit(device, baudrate, **kwargs)


def detect_serial_capability(timeout=None, write_timeout=None, chunk_gap=default_chunk_gap):
    """
    Determines if the host supports serial ports.
    :return: a SerialCapability, or None when pyserial cannot enumerate ports on this platform.
    """
    try:
        list_ports = importlib.import_module('serial.tools.list_ports')
    except ImportError as e:
        logger.warning("serial ports are not supported: %s", e)
        return None
    return SerialCapability(list_ports, timeout, write_timeout, chunk_gap)


class SerialDiscovery(PolledResourceDiscovery):
    """ Monitors the serial ports present. """

    def __init__(self, capability: SerialCapability, recognised_only=False):
        super().__init__()
        self.capability = capability
        self.recognised_only = recognised_only

    def _is_allowed(self, key, device):
        return not self.recognised_only or is_recognised_device(device)

    def _fetch_available(self):
        return {p.device: p for p in self._fetch_ports()}

    def _fetch_ports(self):
        return self.capability.ports()
