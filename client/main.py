"""
Main entry point for the relay chat client.
Opens the chat window by default; --console runs a plain terminal client.
"""
import argparse
import logging
import sys

from common.crypto import KeyValidationError
from .net import RelayClient


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser()
    ap.add_argument("--host", default="127.0.0.1", help="Server host address")
    ap.add_argument("--port", type=int, default=8080, help="Server port")
    ap.add_argument("--username", default="", help="Display name")
    ap.add_argument("--encrypt", action="store_true", help="Encrypt messages with the shared key")
    ap.add_argument("--key", default="", help="Shared 8-byte key")
    ap.add_argument("--console", action="store_true", help="Run in the terminal instead of a window")
    return ap.parse_args(argv)


def print_event(env):
    ''' Print one incoming event in the terminal client '''
    t = env.get("type")
    if t == "msg":
        sender = env.get("sender")
        print(f"{sender}: {env['text']}" if sender is not None else env["text"])
    elif t == "error":
        print(f"(Error) {env['text']}", file=sys.stderr)
    else:
        print(f"(System) {env['text']}")


def run_console(args):
    if not args.username:
        print("--username is required in console mode", file=sys.stderr)
        return 2
    net = RelayClient(args.host, args.port, args.username,
                      encrypt=args.encrypt, key_text=args.key, on_message=print_event)
    try:
        net.connect()
    except OSError as exc:
        print(f"Could not connect to the server: {exc}", file=sys.stderr)
        return 1
    try:
        for line in sys.stdin:
            line = line.rstrip("\n")
            if not line:
                continue
            if not net.connected:
                break
            try:
                net.send_text(line)
            except KeyValidationError as exc:
                print(f"(Error) Invalid encryption key: {exc}", file=sys.stderr)
    except KeyboardInterrupt:
        pass
    finally:
        net.close()
    return 0


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    if args.console:
        return run_console(args)

    from .ui import ChatUI
    ui = ChatUI(args.host, args.port, args.username, encrypt=args.encrypt, key_text=args.key)
    ui.mainloop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
