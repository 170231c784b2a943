# *-* coding: utf-8 *-*
import logging

from asn1crypto import cms

from docsign import verifier

logger = logging.getLogger(__name__)


def byte_ranges(pdfdata: bytes) -> list:
    """every /ByteRange of the document, in file order"""
    results = []
    n = pdfdata.find(b"/ByteRange")
    while n != -1:
        start = pdfdata.find(b"[", n)
        stop = pdfdata.find(b"]", start)
        if start == -1 or stop == -1:
            raise ValueError("unterminated /ByteRange at offset %d" % n)
        br = [int(i, 10) for i in pdfdata[start + 1 : stop].split()]
        if len(br) != 4 or pdfdata[br[1]] != 60 or pdfdata[br[2] - 1] != 62:
            raise ValueError("/ByteRange at offset %d does not bracket /Contents" % n)
        results.append(br)
        n = pdfdata.find(b"/ByteRange", stop)
    return results


def _split(pdfdata, br):
    contents = pdfdata[br[0] + br[1] + 1 : br[2] - 1]
    bcontents = bytes.fromhex(contents.decode("ascii"))
    data1 = pdfdata[br[0] : br[0] + br[1]]
    data2 = pdfdata[br[2] : br[2] + br[3]]
    return bcontents, data1 + data2


def signature_contents(pdfdata: bytes) -> tuple:
    """
    Decode the last signature of the document.

    :return: asn1crypto.cms.ContentInfo, signed bytes
    """
    brs = byte_ranges(pdfdata)
    if not brs:
        raise ValueError("document is not signed")
    bcontents, signedData = _split(pdfdata, brs[-1])
    return cms.ContentInfo.load(bcontents, strict=False), signedData


def timestamp_token(content_info):
    """the signature_time_stamp_token of the first signer, or None"""
    unsigned = content_info["content"]["signer_infos"][0]["unsigned_attrs"]
    if not unsigned:
        return None
    for attr in unsigned:
        if attr["type"].native == "signature_time_stamp_token":
            return attr["values"][0]
    return None


def verify(pdfdata: bytes, certs=None) -> list:
    """
    Verify PDF signature.
    :param pdfdata: PDF document as bytes.
    :param certs: List of additional certificates used to verify signature (system independent).
    :return: List of tuples containing three boolean values for each signature:
        (hashok, signatureok, certok):
        hashok: bool - True if the hash matches.
        signatureok: bool - True if the signature is valid.
        certok: bool - True if the certificate used for signing is trusted and valid."""
    results = []
    for br in byte_ranges(pdfdata):
        bcontents, signedData = _split(pdfdata, br)
        result = verifier.verify(bcontents, signedData, certs)
        logger.debug("signature over %s: %s", br, result)
        results.append(result)
    return results
