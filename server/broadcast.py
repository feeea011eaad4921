"""
Bounded message queue and the single broadcaster that drains it.

Every reader thread puts Message values on one MessageQueue; one Broadcaster
thread takes them off in FIFO order and writes each payload to every
registered connection, the sender's own included.

Known limitation: writes happen one peer after another on the broadcaster
thread, so a peer that stops reading delays delivery to everyone behind it.
Set write_timeout to bound that delay; a peer that misses the deadline is
dropped like any other failed write.
"""
import logging
from collections import deque
from threading import Condition
from typing import Deque, Optional

from common.messages import Message
from server.state import Connection, ConnectionRegistry

QUEUE_SIZE = 10

log = logging.getLogger(__name__)


class QueueClosed(Exception):
    """Raised by MessageQueue.put once the queue has been closed."""
    pass


class MessageQueue:
    ''' Bounded FIFO with blocking put/get and a close() that releases all waiters '''
    def __init__(self, maxsize: int = QUEUE_SIZE):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.maxsize = maxsize
        self._items: Deque[Message] = deque()
        self._cond = Condition()
        self._closed = False

    def put(self, msg: Message, timeout: Optional[float] = None) -> bool:
        '''
        This function appends a message, waiting while the queue is full.
        Input:
            - msg: message to enqueue
            - timeout: seconds to wait for room; None waits forever
        Output: True if enqueued, False if the timeout expired
        Raises QueueClosed if the queue is closed before or while waiting.
        '''
        with self._cond:
            ok = self._cond.wait_for(
                lambda: self._closed or len(self._items) < self.maxsize, timeout)
            if self._closed:
                raise QueueClosed("message queue is closed")
            if not ok:
                return False
            self._items.append(msg)
            self._cond.notify_all()
            return True

    def get(self, timeout: Optional[float] = None) -> Optional[Message]:
        '''
        This function removes and returns the oldest message, waiting while empty.
        Output: the message, or None when the queue is closed and drained
        (or when timeout expires first)
        '''
        with self._cond:
            self._cond.wait_for(lambda: self._closed or self._items, timeout)
            if not self._items:
                return None
            msg = self._items.popleft()
            self._cond.notify_all()
            return msg

    def close(self) -> None:
        ''' Stop accepting messages. Queued messages can still be taken with get() '''
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)


class Broadcaster:
    '''
    Single consumer of the message queue.
    Input:
        - registry: the relay's connection registry
        - queue: the shared message queue
        - write_timeout: seconds allowed per peer write, None to block
    '''
    def __init__(self, registry: ConnectionRegistry, queue: MessageQueue,
                 write_timeout: Optional[float] = None):
        self.registry = registry
        self.queue = queue
        self.write_timeout = write_timeout

    def run(self) -> None:
        ''' Thread function: broadcast queued messages until the queue is closed and empty '''
        while True:
            msg = self.queue.get()
            if msg is None:
                break
            log.info("(%s): %s", msg.origin, msg.payload.decode("utf-8", "replace"))
            self.broadcast(msg.payload)
        log.debug("broadcaster stopped")

    def broadcast(self, payload: bytes) -> int:
        '''
        This function writes payload to every registered connection.
        A failed write drops only that connection.
        Output: number of successful writes
        '''
        delivered = 0   # count of peers that took the payload

        def deliver(conn: Connection):
            nonlocal delivered
            if self._send(conn, payload):
                delivered += 1

        self.registry.for_each(deliver)
        return delivered

    def _send(self, conn: Connection, payload: bytes) -> bool:
        try:
            conn.send(payload, self.write_timeout)
            return True
        except OSError as exc:
            log.warning("error sending message to %s: %s", conn.endpoint, exc)
            self.registry.remove(conn)   # later broadcasts skip this peer
            conn.close()   # also ends its reader thread
            return False
