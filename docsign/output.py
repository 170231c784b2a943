# *-* coding: utf-8 *-*
import base64
import binascii

from docsign.errors import InvalidPdfStructure, OutputFormatError

FORMAT_BUFFER = "buffer"
FORMAT_BASE64 = "base64"
FORMATS = (FORMAT_BUFFER, FORMAT_BASE64)


def decode_input(data):
    """
    Accept raw PDF bytes or a base64 string, line breaks allowed.

    :raises InvalidPdfStructure: ``data`` is a string that is not base64
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    try:
        return base64.b64decode("".join(data.split()), validate=True)
    except (binascii.Error, ValueError, TypeError, AttributeError) as exc:
        raise InvalidPdfStructure("document is not valid base64") from exc


def encode_output(data, format=FORMAT_BUFFER):
    if format == FORMAT_BUFFER:
        return bytes(data)
    if format == FORMAT_BASE64:
        return base64.b64encode(data).decode("ascii")
    raise OutputFormatError(
        "unknown output format %r, expected one of %s" % (format, ", ".join(FORMATS))
    )
