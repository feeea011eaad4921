import threading
import unittest

from client.net import RelayClient, NotConnectedError
from common.crypto import KeyValidationError, encrypt
from support import start_relay, dial, wait_until

KEY = "01234567"


class Inbox:
    ''' Collects events delivered to RelayClient.on_message '''
    def __init__(self):
        self.events = []
        self.lock = threading.Lock()

    def __call__(self, env):
        with self.lock:
            self.events.append(env)

    def of_type(self, t):
        with self.lock:
            return [e for e in self.events if e["type"] == t]


class RelayClientTests(unittest.TestCase):
    def setUp(self):
        self.server = start_relay()
        self.clients = []

    def tearDown(self):
        for c in self.clients:
            c.close()
        self.server.shutdown()

    def join(self, username, **kwargs):
        inbox = Inbox()
        client = RelayClient(*self.server.address, username, on_message=inbox, **kwargs)
        client.connect()
        self.clients.append(client)
        self.assertTrue(wait_until(lambda: len(self.server.registry) == len(self.clients)))
        return client, inbox

    def test_plaintext_self_echo(self):
        alice, alice_in = self.join("alice")
        bob, bob_in = self.join("bob")
        alice.send_text("hi")
        for inbox in (alice_in, bob_in):
            self.assertTrue(wait_until(lambda: inbox.of_type("msg")))
            env = inbox.of_type("msg")[0]
            self.assertEqual((env["sender"], env["text"]), ("alice", "hi"))
            self.assertEqual(env["raw"], "alice: hi")

    def test_encrypted_exchange(self):
        observer = dial(self.server, 1)
        self.clients.append(observer)   # closed in tearDown like the others
        alice, _ = self.join("alice", encrypt=True, key_text=KEY)
        bob, bob_in = self.join("bob", encrypt=True, key_text=KEY)

        alice.send_text("hi")
        self.assertTrue(wait_until(lambda: bob_in.of_type("msg")))
        env = bob_in.of_type("msg")[0]
        self.assertEqual((env["sender"], env["text"]), ("alice", "hi"))

        wire = observer.recv(2048).decode()
        self.assertTrue(wire.startswith("alice: "))
        self.assertNotEqual(wire, "alice: hi")
        self.assertEqual(wire, "alice: " + encrypt("hi", KEY.encode()))

    def test_undecodable_message_is_rejected(self):
        alice, alice_in = self.join("alice", encrypt=True, key_text=KEY)
        bob, _ = self.join("bob")
        bob.send_text("not hex at all")
        self.assertTrue(wait_until(lambda: alice_in.of_type("error")))
        self.assertEqual(alice_in.of_type("msg"), [])
        self.assertTrue(alice.connected)

        # the connection keeps working after a rejected line
        alice.send_text("still here")
        self.assertTrue(wait_until(lambda: alice_in.of_type("msg")))
        self.assertEqual(alice_in.of_type("msg")[0]["text"], "still here")

    def test_bad_key_on_receive_is_reported(self):
        alice, _ = self.join("alice")
        bob, bob_in = self.join("bob", encrypt=True, key_text="short")
        alice.send_text("hi")
        self.assertTrue(wait_until(lambda: bob_in.of_type("error")))
        self.assertIn("8 bytes", bob_in.of_type("error")[0]["text"])
        self.assertTrue(bob.connected)

    def test_bad_key_on_send_sends_nothing(self):
        alice, alice_in = self.join("alice", encrypt=True, key_text="1234567")
        with self.assertRaises(KeyValidationError):
            alice.send_text("hi")
        self.assertFalse(wait_until(lambda: alice_in.events, timeout=0.2))

    def test_send_without_connection(self):
        client = RelayClient("127.0.0.1", 1, "nobody")
        with self.assertRaises(NotConnectedError):
            client.send_text("hi")

    def test_backlog_is_flushed_to_late_handler(self):
        alice = RelayClient(*self.server.address, "alice")
        alice.connect()
        self.clients.append(alice)
        self.assertTrue(wait_until(lambda: len(self.server.registry) == 1))
        alice.send_text("early")
        self.assertTrue(wait_until(lambda: alice._backlog))

        inbox = Inbox()
        alice.on_message = inbox
        self.assertEqual([e["text"] for e in inbox.events], ["early"])

    def test_relay_shutdown_reports_disconnect(self):
        alice, alice_in = self.join("alice")
        self.server.shutdown()
        self.assertTrue(wait_until(lambda: alice_in.of_type("system")))
        self.assertEqual(alice_in.of_type("system")[0]["text"], "Disconnected.")
        self.assertFalse(alice.connected)

    def test_close_is_idempotent(self):
        alice, alice_in = self.join("alice")
        alice.close()
        alice.close()
        self.assertFalse(alice.connected)
        self.assertEqual(alice_in.of_type("system"), [])

    def test_decode_line(self):
        client = RelayClient("127.0.0.1", 1, "me", encrypt=True, key_text=KEY)
        ok = client.decode_line(("bob: " + encrypt("yo", KEY.encode())).encode())
        self.assertEqual((ok["type"], ok["sender"], ok["text"]), ("msg", "bob", "yo"))
        self.assertEqual(client.decode_line(b"no separator")["type"], "error")
        client.encrypt = False
        plain = client.decode_line(b"no separator")
        self.assertEqual((plain["sender"], plain["text"]), (None, "no separator"))


if __name__ == "__main__":
    unittest.main()
