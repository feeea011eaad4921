import dataclasses
import unittest

from common.messages import Message, format_line, split_line


class EnvelopeTests(unittest.TestCase):
    def test_format(self):
        self.assertEqual(format_line("alice", "hi"), "alice: hi")

    def test_split(self):
        self.assertEqual(split_line("alice: hi"), ("alice", "hi"))

    def test_split_keeps_later_separators_in_body(self):
        self.assertEqual(split_line("alice: note: read this"), ("alice", "note: read this"))

    def test_split_without_separator(self):
        self.assertEqual(split_line("no sender here"), (None, "no sender here"))

    def test_empty_body(self):
        self.assertEqual(split_line(format_line("bob", "")), ("bob", ""))


class MessageTests(unittest.TestCase):
    def test_immutable(self):
        msg = Message(origin="127.0.0.1:5000", payload=b"alice: hi")
        with self.assertRaises(dataclasses.FrozenInstanceError):
            msg.payload = b"changed"


if __name__ == "__main__":
    unittest.main()
