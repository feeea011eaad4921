import logging
import socket
import threading
from typing import Optional, Callable, Dict, Any, List

from common.crypto import validate_key, encrypt, decrypt, KeyValidationError, CipherDecodeError
from common.messages import format_line, split_line
from common.protocol import make_reader, encode_line, ENC, DELIM

log = logging.getLogger(__name__)


class NotConnectedError(ConnectionError):
    """Raised when sending while no connection to the relay is open."""
    pass


class RelayClient:
    ''' Network client for the relay chat '''
    def __init__(self, host: str, port: int, username: str,
                 encrypt: bool = False, key_text: str = "",
                 on_message: Optional[Callable[[Dict[str, Any]], None]] = None,
                 framing: str = "raw"):
        self.host, self.port, self.username = host, port, username
        self.encrypt = encrypt      # local setting; peers must agree out of band
        self.key_text = key_text    # shared key as typed, validated at each use
        self.framing = framing
        self.sock: Optional[socket.socket] = None
        # Backlog events until a handler is attached; then flush
        self._on_message: Optional[Callable[[Dict[str, Any]], None]] = None
        self._backlog: List[Dict[str, Any]] = []
        self._lock = threading.Lock()   # guards _on_message/_backlog handover
        if on_message:
            self.on_message = on_message
        self.recv_thread: Optional[threading.Thread] = None
        self.running = False

    @property
    def connected(self) -> bool:
        return self.running and self.sock is not None

    @property
    def on_message(self) -> Optional[Callable[[Dict[str, Any]], None]]:
        ''' The callback for incoming events '''
        return self._on_message

    @on_message.setter
    def on_message(self, cb: Optional[Callable[[Dict[str, Any]], None]]):
        '''
        Set the callback for incoming events. Events received before a
        callback was attached are replayed to it now, in arrival order.
        '''
        with self._lock:
            self._on_message = cb
            pending, self._backlog = (self._backlog, []) if cb else ([], self._backlog)
        for env in pending:
            cb(env)

    def connect(self):
        ''' Open the TCP connection and start the receive thread '''
        if self.connected:
            return
        self.sock = socket.create_connection((self.host, self.port))
        self.sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)  # send short lines immediately
        self.running = True
        self.recv_thread = threading.Thread(target=self._recv_loop, args=(self.sock,), daemon=True)
        self.recv_thread.start()

    def close(self):
        ''' Disconnect; calling it again does nothing '''
        self.running = False   # tells the receive thread the close is ours
        sock, self.sock = self.sock, None   # take the socket so a second close sees None
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)   # wakes the receive thread out of recv()
        except OSError:
            pass   # already reset by the relay
        sock.close()

    def send_text(self, text: str):
        '''
        Send one chat line as "<username>: <body>".
        When encryption is on the body is the hex DES ciphertext of text.
        Raises KeyValidationError (nothing is sent) if the key is not 8 bytes,
        NotConnectedError if not connected, OSError if the write fails.
        '''
        body = text
        if self.encrypt:
            key = validate_key(self.key_text)
            body = encrypt(text, key)
        sock = self.sock
        if not self.running or sock is None:
            raise NotConnectedError("not connected to the relay")
        sock.sendall(encode_line(format_line(self.username, body), self.framing))

    def decode_line(self, raw: bytes) -> Dict[str, Any]:
        '''
        Turn one received chunk into an event dict.
        Output: {"type": "msg", "sender", "text", "raw"} or, when the line is
        rejected, {"type": "error", "text", "raw"}
        '''
        line = raw.decode(ENC, "replace")
        if self.framing == "line" and line.endswith(DELIM.decode()):
            line = line[:-1]
        sender, body = split_line(line)
        if not self.encrypt:
            return {"type": "msg", "sender": sender, "text": body, "raw": line}
        if sender is None:
            return {"type": "error", "text": "received line without a sender", "raw": line}
        try:
            key = validate_key(self.key_text)
            text = decrypt(body, key)
        except KeyValidationError as exc:
            return {"type": "error", "text": f"cannot decrypt: {exc}", "raw": line}
        except CipherDecodeError as exc:
            return {"type": "error", "text": f"could not decrypt message from {sender}: {exc}", "raw": line}
        return {"type": "msg", "sender": sender, "text": text, "raw": line}

    def _emit(self, env: Dict[str, Any]):
        with self._lock:
            cb = self._on_message
            if cb is None:   # no UI yet: keep it for the handler setter to replay
                self._backlog.append(env)
                return
        cb(env)

    def _recv_loop(self, sock: socket.socket):
        ''' Thread function to receive lines from the relay '''
        reader = make_reader(sock, self.framing)
        try:
            while self.running:
                for raw in reader.read():
                    self._emit(self.decode_line(raw))
        except OSError as exc:
            if self.running:
                log.info("read from relay failed: %s", exc)
        finally:
            was_running = self.running   # False when close() was called by the user
            if self.sock is sock:   # a reconnect may already have replaced the socket
                self.close()
            if was_running:   # tell the UI the relay went away
                self._emit({"type": "system", "text": "Disconnected."})
