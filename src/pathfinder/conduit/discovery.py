"""
    Resource discovery for serial ports.
    A given type of resource is polled and events published as the resource
    becomes available or unavailable. For example, when a SerialDiscovery finds
    a new serial port, a ResourceAvailableEvent is posted with the port details.
"""

import logging

from pathfinder.support.events import EventSource
from pathfinder.support.mixins import CommonEqualityMixin, StringerMixin

logger = logging.getLogger(__name__)


class ResourceEvent(CommonEqualityMixin, StringerMixin):
    """ Notification about a resource. """
    def __init__(self, source, key, resource):
        """
        :param source   The ResourceDiscovery that posted this event
        :param key An identifier for the resource, such as the device path of a serial port.
        :param resource The resource itself, which may have details beyond what is available in key.
        """
        self.source = source
        self.key = key
        self.resource = resource


class ResourceAvailableEvent(ResourceEvent):
    """ Signifies that a resource is available. """


class ResourceUnavailableEvent(ResourceEvent):
    """ Signifies that a resource has become unavailable. """


class PolledResourceDiscovery:
    """
    Determines updates to the available resources each time update() is called,
    and fires an event to listeners for each resource that appeared, disappeared or changed.
    """

    def __init__(self):
        self.listeners = EventSource()
        self.previous = {}      # the previously known resources

    @property
    def available(self) -> dict:
        """ the resources known after the last update. """
        return dict(self.previous)

    def _is_allowed(self, key, resource):
        """
        Template method for subclasses to exclude resources from discovery.
        """
        return True

    def _fetch_available(self) -> dict:
        """ Template method for subclasses to determine the current resources.
        :return: a dictionary of resource key to resource instance.
        """
        return {}

    def _changed_events(self, available: dict) -> list:
        """
        Computes which resources have been added, removed or changed.
        A changed resource is reported as unavailable followed by available.
        """
        events = []
        for key in sorted(set(self.previous) | set(available)):
            previous = self.previous.get(key)
            current = available.get(key)
            if previous == current:
                continue
            if previous is not None:
                logger.info("unavailable device: %s", key)
                events.append(ResourceUnavailableEvent(self, key, previous))
            if current is not None:
                logger.info("available device: %s", key)
                events.append(ResourceAvailableEvent(self, key, current))
        return events

    def update(self) -> list:
        """ fetches the available resources, fires events for any changes and returns them. """
        available = {k: v for k, v in self._fetch_available().items() if self._is_allowed(k, v)}
        events = self._changed_events(available)
        self.previous = available
        self.listeners.fire_all(events)
        return events
