from abc import abstractmethod


class Conduit:
    """
    A conduit allows two-way communication with a device. The read side delivers chunks of
    bytes as the device produces them; the write side accepts raw byte buffers. The two sides
    are independent: a write may be issued while a read is pending.
    """

    @property
    @abstractmethod
    def target(self):
        """ the underlying resource, such as a serial.Serial instance """
        raise NotImplementedError

    @property
    @abstractmethod
    def open(self) -> bool:
        """ determines if this conduit is open. When open, chunks can be read and data written."""
        raise NotImplementedError

    @abstractmethod
    def read_chunk(self):
        """ Blocks until the next chunk of bytes is available.
        :return: the bytes read, an empty bytes value when no data arrived within the
            read timeout or the read was cancelled, or None at the end of the stream.
        """
        raise NotImplementedError

    @abstractmethod
    def cancel_read(self):
        """ Causes a pending read_chunk() call to return early. Called from another thread. """
        raise NotImplementedError

    @abstractmethod
    def write(self, data: bytes):
        raise NotImplementedError

    @abstractmethod
    def flush(self):
        """ Blocks until all written data has been transmitted. """
        raise NotImplementedError

    @abstractmethod
    def close(self):
        """
        Closes both the read and write sides.
        """
        raise NotImplementedError


class ConduitFactory:
    """
    A factory knows how to open a conduit to a named device.
    """
    @abstractmethod
    def __call__(self, device, baudrate, **kwargs) -> Conduit:
        """
        Opens the conduit. Raises OSError (or ValueError for invalid settings) if the
        device cannot be opened. Nothing is left open when an exception is raised.
        """
        raise NotImplementedError()
