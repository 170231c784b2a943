# *-* coding: utf-8 *-*
"""
Failure kinds raised by the signing engine.

Every error derives from :class:`SigningError`, so callers that only want to
show "signing temporarily unavailable" can catch the base class, while the
workflow can still tell the classes below apart.
"""


class SigningError(Exception):
    """Base error for every signing failure."""


class ConfigurationError(SigningError):
    """Signing configuration is missing or inconsistent."""


class CertificateError(SigningError):
    """The signing identity could not be loaded."""


class CertificateLoadError(CertificateError):
    """Malformed PKCS#12 data, wrong passphrase or unusable key material."""


class CertificateNotFoundError(CertificateError):
    """The configured certificate file or token object does not exist."""


class PdfStructureError(SigningError):
    """The document cannot receive a signature."""


class InvalidPdfStructure(PdfStructureError):
    """The input is not a PDF this engine can parse and update."""


class PlaceholderTooLarge(PdfStructureError):
    """The requested signature space exceeds the PDF string limit."""


class TimestampAuthorityError(SigningError):
    """Base error for RFC 3161 timestamp failures."""

    def __init__(self, message, url=None):
        super().__init__(message)
        self.url = url


class TimestampAuthorityUnreachable(TimestampAuthorityError):
    """Connection failed or the authority did not answer in time."""


class TimestampAuthorityRejected(TimestampAuthorityError):
    """The authority answered, but not with a usable timestamp token."""


class SignatureComputationError(SigningError):
    """The CMS signature could not be produced with the resolved key."""


class PlaceholderOverflow(SigningError):
    """
    The CMS structure does not fit into the reserved /Contents field.

    Not recoverable for the same placeholder: the document has to be
    prepared again with a larger reservation.
    """

    def __init__(self, required, capacity):
        super().__init__(
            "signature needs %d bytes but only %d were reserved" % (required, capacity)
        )
        self.required = required
        self.capacity = capacity


class OutputFormatError(SigningError):
    """The caller asked for an output encoding that does not exist."""
