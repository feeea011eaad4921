from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
import selectors
import socket
import time
from threading import Lock

# send without blocking once select() says the socket is writable (POSIX only)
_DONTWAIT = getattr(socket, "MSG_DONTWAIT", 0)


@dataclass(eq=False)   # compared and hashed by identity: one object per accepted socket
class Connection:
    sock: socket.socket        # socket connected to the client
    addr: Tuple[str, int]      # remote endpoint as returned by accept()
    closed: bool = False
    _close_lock: Lock = field(default_factory=Lock, repr=False)

    @property
    def endpoint(self) -> str:
        ''' Remote endpoint as "host:port" '''
        return f"{self.addr[0]}:{self.addr[1]}"

    def send(self, data: bytes, timeout: Optional[float] = None) -> None:
        '''
        This function writes all of data to the peer.
        Input:
            - data: bytes to write
            - timeout: seconds allowed for the whole write; None blocks until done
        Raises OSError on failure, TimeoutError when the deadline passes.
        '''
        if self.closed:
            raise ConnectionError(f"{self.endpoint} is closed")
        if timeout is None:
            self.sock.sendall(data)   # blocks on a slow peer; see server/broadcast.py
            return

        deadline = time.monotonic() + timeout
        view = memoryview(data)   # slice without copying as the peer takes bytes
        # works for descriptors above FD_SETSIZE, unlike select.select()
        with selectors.DefaultSelector() as sel:
            try:
                sel.register(self.sock, selectors.EVENT_WRITE)
            except ValueError:
                if self.sock.fileno() != -1:
                    raise
                # closed by another thread between the check above and here
                raise ConnectionError(f"{self.endpoint} is closed") from None
            while view:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(f"write to {self.endpoint} timed out")
                if not sel.select(remaining):   # nothing writable before the deadline
                    raise TimeoutError(f"write to {self.endpoint} timed out")
                try:
                    sent = self.sock.send(view, _DONTWAIT)
                except BlockingIOError:
                    continue   # buffer filled up again between select and send
                view = view[sent:]

    def close(self) -> None:
        ''' This function closes the socket once; later calls do nothing '''
        with self._close_lock:
            if self.closed:
                return
            self.closed = True
        try:
            # shutdown wakes up a reader blocked in recv() on another thread
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()


class ConnectionRegistry:
    # This class holds every live connection of the relay
    def __init__(self):
        self.lock = Lock()  # guards _conns only; never held during a write
        self._conns: Dict[int, Connection] = {}   # id(conn) -> conn, keeps insertion order

    def add(self, conn: Connection) -> bool:
        ''' This function registers a connection; returns False if it is already registered '''
        with self.lock:
            if id(conn) in self._conns:
                return False
            self._conns[id(conn)] = conn
            return True

    def remove(self, conn: Connection) -> bool:
        ''' This function unregisters a connection; returns False if it was not registered '''
        with self.lock:
            return self._conns.pop(id(conn), None) is not None

    def __contains__(self, conn: Connection) -> bool:
        with self.lock:
            return self._conns.get(id(conn)) is conn

    def __len__(self) -> int:
        with self.lock:
            return len(self._conns)

    def snapshot(self) -> List[Connection]:
        ''' This function returns a copy of the registered connections '''
        with self.lock:
            return list(self._conns.values())

    def for_each(self, visitor: Callable[[Connection], None]) -> int:
        '''
        This function calls visitor once for every registered connection.
        Iteration runs over a snapshot; a connection removed by another thread
        after the snapshot is skipped. Connections added after the snapshot are
        not visited in this call.
        Output: number of connections visited
        '''
        visited = 0
        for conn in self.snapshot():
            if conn not in self:
                continue
            visitor(conn)
            visited += 1
        return visited

    def clear(self) -> List[Connection]:
        ''' This function empties the registry and returns what it held '''
        with self.lock:
            conns = list(self._conns.values())
            self._conns.clear()
            return conns
