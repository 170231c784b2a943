#!/usr/bin/env python3
# coding: utf-8
import base64
import unittest

from docsign.errors import InvalidPdfStructure, OutputFormatError
from docsign.output import decode_input, encode_output


class OutputTests(unittest.TestCase):
    data = b"%PDF-1.7\n%%EOF\n"

    def test_buffer(self):
        self.assertEqual(encode_output(self.data, "buffer"), self.data)
        self.assertIsInstance(encode_output(bytearray(self.data), "buffer"), bytes)

    def test_base64(self):
        encoded = encode_output(self.data, "base64")
        self.assertIsInstance(encoded, str)
        self.assertEqual(base64.b64decode(encoded), self.data)

    def test_unknown_format(self):
        with self.assertRaises(OutputFormatError):
            encode_output(self.data, "hex")

    def test_decode_bytes(self):
        self.assertEqual(decode_input(self.data), self.data)
        self.assertEqual(decode_input(bytearray(self.data)), self.data)

    def test_decode_base64(self):
        encoded = base64.b64encode(self.data).decode("ascii")
        self.assertEqual(decode_input(encoded), self.data)

    def test_decode_wrapped_base64(self):
        data = self.data * 20
        encoded = base64.encodebytes(data).decode("ascii")
        self.assertIn("\n", encoded.rstrip("\n"))
        self.assertEqual(decode_input(encoded), data)
        self.assertEqual(decode_input(encoded.replace("\n", "\r\n")), data)

    def test_decode_invalid(self):
        with self.assertRaises(InvalidPdfStructure):
            decode_input("%PDF-1.7 not base64")
        with self.assertRaises(InvalidPdfStructure):
            decode_input("zażółć")


if __name__ == '__main__':
    unittest.main()
