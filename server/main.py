"""
Entry point for the relay server.
Run with: python -m server.main [--host HOST] [--port PORT]
"""
import argparse
import logging

from common.protocol import FRAMINGS
from server.config import HOST, PORT, RelayConfig
from server.broadcast import QUEUE_SIZE
from server.relay import RelayServer


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Relay every chat line to every connected client.")
    ap.add_argument("--host", default=HOST, help="Address to listen on")
    ap.add_argument("--port", type=int, default=PORT, help="Port to listen on")
    ap.add_argument("--queue-size", type=int, default=QUEUE_SIZE,
                    help="Messages buffered before readers block")
    ap.add_argument("--write-timeout", type=float, default=None,
                    help="Seconds to wait on one slow client before dropping it (default: wait forever)")
    ap.add_argument("--framing", choices=FRAMINGS, default="raw",
                    help="raw: one read is one message; line: newline-delimited")
    ap.add_argument("--log-level", default="INFO",
                    choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return ap.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(asctime)s - %(levelname)s - %(message)s")
    try:
        config = RelayConfig.from_args(args)
    except ValueError as exc:
        raise SystemExit(f"invalid configuration: {exc}")

    server = RelayServer(config)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.shutdown()


if __name__ == "__main__":
    main()
