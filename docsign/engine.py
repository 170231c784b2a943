# *-* coding: utf-8 *-*
"""
Signing pipeline used by the document workflow.

Build one :class:`SigningEngine` at process start, usually with
:meth:`SigningEngine.from_env`, and share it between requests.
"""
import logging
from datetime import datetime, timezone

import attr

from docsign.certificate import SignerResolver
from docsign.config import SigningConfig
from docsign.errors import OutputFormatError, TimestampAuthorityError
from docsign.output import FORMATS, decode_input, encode_output
from docsign.pdf.cms import sign_placeholder
from docsign.pdf.placeholder import estimate_signature_length, reserve_signature_space
from docsign.timestamp import TimestampAuthorityResolver

logger = logging.getLogger(__name__)


@attr.s(frozen=True)
class SignatureResult(object):
    data = attr.ib(repr=False)
    signed_at = attr.ib()
    timestamped = attr.ib()
    byte_range = attr.ib()


class SigningEngine(object):
    def __init__(self, signers, timestamps, config):
        self.signers = signers
        self.timestamps = timestamps
        self.config = config

    @classmethod
    def from_env(cls, environ=None):
        config = SigningConfig.from_env(environ)
        return cls(SignerResolver(config), TimestampAuthorityResolver(config), config)

    def signature_length(self, signer, timestamped):
        if self.config.signature_length is not None:
            return self.config.signature_length
        _, cert = signer.certificate()
        return estimate_signature_length([cert] + signer.certificates(), timestamped)

    def _sign(self, pdf, signer, authority, signed_at, metadata):
        length = self.signature_length(signer, authority is not None)
        placeholder = reserve_signature_space(
            pdf, length, signing_time=signed_at, **metadata
        )
        signed = sign_placeholder(
            placeholder,
            signer,
            authority,
            hashalgo=self.config.digest,
            signing_time=signed_at,
        )
        return signed, placeholder.byte_range

    def sign(self, pdf, output_format="buffer", **metadata):
        """
        Sign ``pdf`` and return a :class:`SignatureResult`.

        :param pdf: PDF bytes or a base64 string
        :param output_format: ``buffer`` for bytes, ``base64`` for a str
        :param metadata: ``field_name``, ``reason``, ``location``, ``contact``
        :raises SigningError: any failure; nothing is returned partially
        """
        if output_format not in FORMATS:
            raise OutputFormatError("unknown output format %r" % (output_format,))
        signer = self.signers.resolve()
        pdf = decode_input(pdf)
        authority = self.timestamps.get_timestamp_authority()
        signed_at = datetime.now(tz=timezone.utc).replace(microsecond=0)
        logger.debug("signing %d bytes, timestamp authority %s", len(pdf), authority)

        try:
            signed, byte_range = self._sign(pdf, signer, authority, signed_at, metadata)
            timestamped = authority is not None
        except TimestampAuthorityError as exc:
            if self.config.timestamp_required:
                raise
            logger.warning(
                "timestamp authority %s failed, signing without timestamp: %s", exc.url, exc
            )
            signed, byte_range = self._sign(pdf, signer, None, signed_at, metadata)
            timestamped = False

        return SignatureResult(
            encode_output(signed, output_format), signed_at, timestamped, tuple(byte_range)
        )
