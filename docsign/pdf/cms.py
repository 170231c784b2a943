# *-* coding: utf-8 *-*
import hashlib
import logging

from docsign import signer as cms_signer
from docsign.errors import PlaceholderOverflow

logger = logging.getLogger(__name__)


def embed_signature(placeholder, contents):
    """
    Write DER ``contents`` into the reserved /Contents string.

    Unused space stays filled with ``0`` digits after the signature, DER
    parsers stop at the end of the outer structure. The buffer keeps its length.

    :raises PlaceholderOverflow: ``contents`` is longer than the reservation
    """
    capacity = placeholder.capacity
    if len(contents) > capacity:
        raise PlaceholderOverflow(len(contents), capacity)
    contents = contents.hex().encode("ascii")
    contents += b"0" * (2 * capacity - len(contents))
    _, br1, br2, _ = placeholder.byte_range
    datas = placeholder.data
    signed = datas[: br1 + 1] + contents + datas[br2 - 1 :]
    assert len(signed) == len(datas)
    return signed


def sign_placeholder(
    placeholder,
    signer,
    timestamp_authority=None,
    *,
    hashalgo="sha256",
    signing_time=None,
):
    """
    Sign the byte ranges of ``placeholder`` and splice in the CMS structure.

    :param placeholder: docsign.pdf.placeholder.Placeholder
    :param signer: docsign.hsm.BaseSigner
    :param timestamp_authority: docsign.timestamp.TimestampAuthority or None
    :return: signed document bytes
    """
    md = getattr(hashlib, hashalgo)()
    _, br1, br2, br3 = placeholder.byte_range
    md.update(placeholder.data[:br1])
    md.update(placeholder.data[br2 : br2 + br3])
    md = md.digest()

    contents = cms_signer.sign(
        None,
        signer,
        hashalgo,
        signed_value=md,
        signing_time=signing_time,
        timestamp=timestamp_authority,
    )
    logger.debug(
        "CMS structure is %d of %d reserved bytes", len(contents), placeholder.capacity
    )
    return embed_signature(placeholder, contents)
