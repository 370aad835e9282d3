"""
Asks the platform for a serial port to use, and remembers the ports that were chosen.
"""
import logging
import threading

from serial.tools.list_ports_common import ListPortInfo

from pathfinder.conduit.discovery import ResourceUnavailableEvent
from pathfinder.conduit.serial_conduit import SerialCapability, SerialDiscovery, default_chunk_gap, \
    detect_serial_capability, find_recognised_device_ports
from pathfinder.errors import OpenFailedError, UnsupportedPlatformError
from pathfinder.support.events import EventSource

logger = logging.getLogger(__name__)


class PortHandle:
    """
    Identifies one physical serial device. A handle is claimed by the session that opens it
    and released when the session closes; while claimed, no other session may open it.
    Handles cannot be copied.
    """

    def __init__(self, info: ListPortInfo):
        self.info = info
        self._owner = None
        self._lock = threading.Lock()

    @property
    def device(self) -> str:
        return self.info.device

    @property
    def description(self) -> str:
        return self.info.description

    @property
    def claimed(self) -> bool:
        return self._owner is not None

    def claim(self, owner):
        """
        :raises OpenFailedError: if another owner holds the handle.
        """
        with self._lock:
            if self._owner is not None and self._owner is not owner:
                raise OpenFailedError("%s is in use by another session" % self.device)
            self._owner = owner

    def release(self, owner) -> bool:
        """ releases the claim if held by owner.
        :return: True if the claim was released
        """
        with self._lock:
            if self._owner is not owner:
                return False
            self._owner = None
            return True

    def __copy__(self):
        raise TypeError("port handles cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("port handles cannot be copied")

    def __repr__(self):
        return "PortHandle(%r)" % self.device


def auto_select(ports):
    """
    Chooses the first recognised USB serial adapter, or the only port present.
    :return: the chosen port info, or None when the choice is ambiguous or there are no ports
    """
    recognised = tuple(find_recognised_device_ports(ports))
    if recognised:
        return recognised[0]
    return ports[0] if len(ports) == 1 else None


def named_selector(device):
    """ Creates a selector that always chooses the named device, even if it is not enumerated. """
    def select(ports):
        for p in ports:
            if p.device == device:
                return p
        return ListPortInfo(device, skip_link_detection=True)
    return select


class PortRegistry:
    """
    Requests a port from the platform through a selector, which stands in for the user choosing
    a device, and keeps the ports chosen as authorized ports.

    :param capability: the host's serial capability, or None if the host has none
    :param selector: called with the tuple of ports present, returns the chosen port or None
    :param recognised_only: when True, only recognised USB serial adapters are offered
    """

    def __init__(self, capability: SerialCapability, selector=auto_select, recognised_only=False):
        self.capability = capability
        self.selector = selector
        self.recognised_only = recognised_only
        self.listeners = EventSource()
        self._authorized = {}
        self._lock = threading.Lock()
        self.discovery = None
        if capability is not None:
            self.discovery = SerialDiscovery(capability, recognised_only)
            self.discovery.listeners += self._discovery_event

    @property
    def supported(self) -> bool:
        return self.capability is not None

    def available_ports(self) -> tuple:
        """ the ports that would be offered to the selector. """
        if self.capability is None:
            raise UnsupportedPlatformError()
        try:
            ports = self.capability.ports()
        except OSError as e:
            raise OpenFailedError("Could not list serial ports: %s" % e) from e
        return tuple(find_recognised_device_ports(ports)) if self.recognised_only else ports

    def request_port(self) -> PortHandle:
        """
        Asks the selector to choose a port and authorizes it.
        :raises UnsupportedPlatformError: when the host has no serial capability
        :raises OpenFailedError: when no port is chosen
        """
        ports = self.available_ports()
        try:
            chosen = self.selector(ports)
        except EOFError as e:
            raise OpenFailedError("Port selection was cancelled") from e
        if chosen is None:
            raise OpenFailedError("No port selected")
        return self._authorize(chosen)

    def _authorize(self, info) -> PortHandle:
        with self._lock:
            handle = self._authorized.get(info.device)
            if handle is None:
                handle = PortHandle(info)
                self._authorized[info.device] = handle
                logger.info("authorized port %s", info.device)
            return handle

    def list_authorized_ports(self) -> tuple:
        """ a snapshot of the ports authorized so far, in the order they were first chosen. """
        with self._lock:
            return tuple(self._authorized.values())

    def revoke(self, port) -> bool:
        """ forgets an authorized port, given its handle or device name. """
        device = port.device if isinstance(port, PortHandle) else port
        with self._lock:
            handle = self._authorized.pop(device, None)
        if handle is not None:
            logger.info("revoked port %s", device)
        return handle is not None

    def update(self) -> list:
        """ polls the ports present, revoking authorized ports that have gone. """
        return self.discovery.update() if self.discovery is not None else []

    def _discovery_event(self, event):
        if isinstance(event, ResourceUnavailableEvent):
            self.revoke(event.key)
        self.listeners.fire(event)


def default_registry(selector=auto_select, recognised_only=False, timeout=None, write_timeout=None,
                     chunk_gap=default_chunk_gap) -> PortRegistry:
    """ creates a registry for the host's serial ports, detecting the serial capability. """
    capability = detect_serial_capability(timeout, write_timeout, chunk_gap)
    return PortRegistry(capability, selector, recognised_only)
