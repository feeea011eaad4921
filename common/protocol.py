import socket
from typing import List

ENC = "utf-8"       # encoding for chat text
DELIM = b"\n"       # delimiter used by line framing
BUFFER_SIZE = 2048  # bytes requested per recv()

FRAMINGS = ("raw", "line")


class RawReader:
    '''
    Original framing: whatever one recv() returns is one message.
    This only holds while senders write short lines in a single call and the
    network does not split or merge them.
    '''
    def __init__(self, sock: socket.socket, bufsize: int = BUFFER_SIZE):
        self.sock = sock
        self.bufsize = bufsize

    def read(self) -> List[bytes]:
        '''
        Read once from the socket.
        Output: list with the single chunk read
        Raises ConnectionError when the peer has closed the stream.
        '''
        chunk = self.sock.recv(self.bufsize)
        if not chunk:
            raise ConnectionError("socket closed")
        return [chunk]


class LineReader:
    '''
    Newline-delimited framing. Residual bytes are buffered per connection so
    a recv() that carries several lines, or half of one, is handled. The
    delimiter stays on each returned line so it can be relayed unchanged.
    '''
    def __init__(self, sock: socket.socket, bufsize: int = BUFFER_SIZE):
        self.sock = sock
        self.bufsize = bufsize
        self._buf = bytearray()

    def read(self) -> List[bytes]:
        lines: List[bytes] = []
        while not lines:
            chunk = self.sock.recv(self.bufsize)
            if not chunk:
                raise ConnectionError("socket closed")
            self._buf.extend(chunk)

            while True:
                nl = self._buf.find(DELIM)
                if nl == -1:
                    break
                lines.append(bytes(self._buf[:nl + 1]))
                del self._buf[:nl + 1]

            # a line longer than the buffer cap is passed on as is
            if not lines and len(self._buf) >= self.bufsize:
                lines.append(bytes(self._buf))
                self._buf.clear()
        return lines


def make_reader(sock: socket.socket, framing: str = "raw", bufsize: int = BUFFER_SIZE):
    ''' This function returns the reader for the given framing mode ("raw" or "line") '''
    if framing == "raw":
        return RawReader(sock, bufsize)
    if framing == "line":
        return LineReader(sock, bufsize)
    raise ValueError(f"unknown framing: {framing!r}")


def encode_line(text: str, framing: str = "raw") -> bytes:
    ''' This function encodes one outgoing chat line for the given framing mode '''
    data = text.encode(ENC)
    if framing == "line":
        data += DELIM
    return data
