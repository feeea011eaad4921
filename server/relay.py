import logging
import socket
import threading
from typing import Optional, Tuple

from common.messages import Message
from common.protocol import make_reader
from server.broadcast import Broadcaster, MessageQueue, QueueClosed
from server.config import RelayConfig
from server.state import Connection, ConnectionRegistry

log = logging.getLogger(__name__)


class RelayServer:
    '''
    Accepts clients and rebroadcasts every message to all of them.
    Input:
        - config: RelayConfig, defaults when omitted
        - registry, queue: injected for tests; created from config otherwise
    '''
    def __init__(self, config: Optional[RelayConfig] = None,
                 registry: Optional[ConnectionRegistry] = None,
                 queue: Optional[MessageQueue] = None):
        self.config = config or RelayConfig()
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.queue = queue if queue is not None else MessageQueue(self.config.queue_size)
        self.broadcaster = Broadcaster(self.registry, self.queue, self.config.write_timeout)
        self.listener: Optional[socket.socket] = None
        self._stopping = threading.Event()
        self._stopped = threading.Event()
        self._accept_thread: Optional[threading.Thread] = None
        self._broadcast_thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Tuple[str, int]:
        ''' The bound (host, port); only valid after start() '''
        if self.listener is None:
            raise RuntimeError("relay is not started")
        return self.listener.getsockname()[:2]

    def start(self) -> None:
        ''' Bind the listening socket and start the broadcaster and accept threads '''
        if self.listener is not None:
            raise RuntimeError("relay already started")
        self.listener = socket.create_server((self.config.host, self.config.port))
        self.listener.settimeout(self.config.accept_poll)
        host, port = self.address
        log.info("relay listening on %s:%s", host, port)

        self._broadcast_thread = threading.Thread(
            target=self.broadcaster.run, name="broadcaster", daemon=True)
        self._broadcast_thread.start()
        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="accept", daemon=True)
        self._accept_thread.start()

    def serve_forever(self) -> None:
        ''' Start the relay and block until shutdown() is called '''
        self.start()
        self._stopped.wait()

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        '''
        Stop accepting, let the broadcaster send what is already queued, then
        close every client connection. Safe to call more than once.
        '''
        if self._stopping.is_set():
            return
        self._stopping.set()
        log.info("relay shutting down")

        if self._accept_thread is not None:
            self._accept_thread.join(timeout)
        if self.listener is not None:
            self.listener.close()

        self.queue.close()
        if self._broadcast_thread is not None:
            self._broadcast_thread.join(timeout)

        for conn in self.registry.clear():
            conn.close()
        self._stopped.set()

    def _accept_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                sock, addr = self.listener.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if self._stopping.is_set():
                    break
                log.warning("accept failed: %s", exc)
                continue

            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            conn = Connection(sock=sock, addr=addr)
            self.registry.add(conn)
            log.info("new connection: %s", conn.endpoint)
            threading.Thread(target=self._read_loop, args=(conn,),
                             name=f"reader-{conn.endpoint}", daemon=True).start()

    def _read_loop(self, conn: Connection) -> None:
        ''' Reader thread for one connection; any read error ends only this connection '''
        reader = make_reader(conn.sock, self.config.framing, self.config.buffer_size)
        try:
            while True:
                for payload in reader.read():   # blocks only this thread
                    self.queue.put(Message(origin=conn.endpoint, payload=payload))   # waits while the queue is full
        except QueueClosed:
            # shutting down: the connection stays registered so it still gets
            # the drained messages; shutdown() closes it afterwards
            return
        except OSError as exc:
            if not conn.closed:
                log.info("connection %s closed: %s", conn.endpoint, exc)
        self.registry.remove(conn)
        conn.close()
