"""


Pathfinder Scale Connections

- Conduit: abstraction of a bi-directional channel to the scale. SerialConduit reads chunks
  from and writes commands to a serial port.
- Serial capability - the host's ability to list and open serial ports. When pyserial cannot
  enumerate ports, there is no capability and the platform is unsupported.
- PortRegistry - asks a selector (the user, a named device, or automatic selection) for a port
  and remembers the ports chosen as authorized ports. Discovery of ports that go away revokes them.
- ScaleSession - one open-to-closed lifecycle of a connection:
    Idle -> Connecting -> Connected -> Disconnecting -> Idle
  with Failed reached from Connecting (open failed) or Connected (read failed).
  A session is used once; each connection creates a new session.
- Reading - the latest text received from the scale with the time it was captured.
  Only the latest reading is kept.
- CalibrationCommand - Zero, Span and Full, written as 'Z', 'S' and 'C' followed by CR LF.
- ScaleConnector - what an observer uses: connect(), send_command(), disconnect(). Publishes
  SessionStatus snapshots of the state, reading and latest error to its `events`.


## Threading

Each connected session runs a background reader thread (an AsyncLoop) that decodes chunks into
readings and posts events from that thread. Commands are written on the caller's thread; a write
lock ensures concurrent commands reach the wire one after another.

Observers that need events on their own thread can subscribe a QueuedEventSource and call
publish() from that thread, as the console does.

Disconnecting stops the reader before the port is closed and the port handle released, so no
chunk from a previous connection is delivered after a reconnect.
"""
