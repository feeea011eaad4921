from dataclasses import dataclass
from typing import Optional

from common.protocol import BUFFER_SIZE, FRAMINGS
from server.broadcast import QUEUE_SIZE

HOST = "127.0.0.1"
PORT = 8080


@dataclass
class RelayConfig:
    host: str = HOST
    port: int = PORT                        # 0 picks a free port
    queue_size: int = QUEUE_SIZE            # capacity of the inbound message queue
    buffer_size: int = BUFFER_SIZE          # bytes per recv()
    write_timeout: Optional[float] = None   # seconds per peer write, None blocks
    framing: str = "raw"                    # "raw" (one recv = one message) or "line"
    accept_poll: float = 0.5                # how often the accept loop checks for shutdown

    def __post_init__(self):
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port out of range: {self.port}")
        if self.queue_size < 1:
            raise ValueError("queue size must be at least 1")
        if self.buffer_size < 1:
            raise ValueError("buffer size must be at least 1")
        if self.write_timeout is not None and self.write_timeout <= 0:
            raise ValueError("write timeout must be positive")
        if self.framing not in FRAMINGS:
            raise ValueError(f"framing must be one of {', '.join(FRAMINGS)}")

    @classmethod
    def from_args(cls, args) -> "RelayConfig":
        ''' Build a config from an argparse namespace produced by server.main '''
        return cls(host=args.host, port=args.port, queue_size=args.queue_size,
                   write_timeout=args.write_timeout, framing=args.framing)
