# *-* coding: utf-8 *-*
"""
Certificate Provider: turns the signing configuration into a signer.

Two transports exist. ``local`` loads a PKCS#12 container (inline base64,
file on disk, or the bundled development certificate) and signs in-process;
``pkcs11`` delegates signing to a token through :class:`docsign.hsm.PKCS11Signer`.
"""
import base64
import binascii
import logging
import os
import threading

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.serialization import pkcs12

from docsign import config as cfg
from docsign.errors import (
    CertificateLoadError,
    CertificateNotFoundError,
    ConfigurationError,
    SignatureComputationError,
)
from docsign.hsm import BaseSigner, PKCS11Signer

logger = logging.getLogger(__name__)

DEVELOPMENT_CERTIFICATE = os.path.join(os.path.dirname(__file__), "data", "example.p12")
DEVELOPMENT_PASSPHRASE = ""


class LocalSigner(BaseSigner):
    def __init__(self, key, cert, othercerts=()):
        self.key = key
        self.cert = cert
        self.othercerts = list(othercerts)

    def certificate(self):
        return None, self.cert

    def certificates(self):
        return list(self.othercerts)

    @property
    def key_algorithm(self):
        if isinstance(self.key, ec.EllipticCurvePrivateKey):
            return "ec"
        return "rsa"

    def sign(self, keyid, data, hashalgo):
        md = getattr(hashes, hashalgo.upper())()
        try:
            if isinstance(self.key, ec.EllipticCurvePrivateKey):
                return self.key.sign(data, ec.ECDSA(md))
            return self.key.sign(data, padding.PKCS1v15(), md)
        except (TypeError, ValueError) as exc:
            raise SignatureComputationError("private key cannot sign: %s" % exc) from exc


def _public_bytes(key):
    return key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )


def build_chain(cert, othercerts, validate=False):
    """
    Order ``othercerts`` from the issuer of ``cert`` upward.

    Certificates that are not part of the path are appended after it so they
    still travel inside the CMS structure.

    :raises CertificateLoadError: when ``validate`` is set and a link in the
        path is not signed by the next certificate.
    """
    remaining = [c for c in othercerts if c != cert]
    chain = []
    current = cert
    while True:
        issuer = next((c for c in remaining if c.subject == current.issuer), None)
        if issuer is None or current.subject == current.issuer:
            break
        if validate:
            try:
                current.verify_directly_issued_by(issuer)
            except (ValueError, TypeError, InvalidSignature) as exc:
                raise CertificateLoadError(
                    "certificate %s is not issued by %s"
                    % (current.subject.rfc4514_string(), issuer.subject.rfc4514_string())
                ) from exc
        chain.append(issuer)
        remaining.remove(issuer)
        current = issuer
    return chain + remaining


def load_pkcs12(data, passphrase, validate_chain=False):
    """
    Parse a PKCS#12 container into a :class:`LocalSigner`.

    :param data: DER bytes of the container
    :param passphrase: str, may be empty
    :raises CertificateLoadError: wrong passphrase, corrupt container, missing
        key or certificate, or a certificate that does not match the key
    """
    password = passphrase.encode("utf-8") if passphrase else None
    try:
        key, cert, othercerts = pkcs12.load_key_and_certificates(data, password)
    except (ValueError, TypeError) as exc:
        raise CertificateLoadError(
            "cannot open PKCS#12 container (wrong passphrase or corrupt data)"
        ) from exc
    if key is None:
        raise CertificateLoadError("PKCS#12 container holds no private key")
    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise CertificateLoadError(
            "unsupported private key type %s" % type(key).__name__
        )
    othercerts = list(othercerts or ())
    if cert is None:
        # some exporters put every certificate into the CA bag
        pub = _public_bytes(key.public_key())
        cert = next((c for c in othercerts if _public_bytes(c.public_key()) == pub), None)
        if cert is None:
            raise CertificateLoadError(
                "failed to find a certificate that matches the private key"
            )
    elif _public_bytes(cert.public_key()) != _public_bytes(key.public_key()):
        raise CertificateLoadError("certificate does not match the private key")
    chain = build_chain(cert, othercerts, validate_chain)
    return LocalSigner(key, cert, chain)


def _read_file(path):
    try:
        with open(path, "rb") as fp:
            return fp.read()
    except FileNotFoundError as exc:
        raise CertificateNotFoundError("certificate file %s does not exist" % path) from exc
    except OSError as exc:
        raise CertificateLoadError("cannot read certificate file %s: %s" % (path, exc)) from exc


def _local_source(config):
    if config.local_file_contents:
        logger.debug("loading signing certificate from inline contents")
        try:
            contents = "".join(config.local_file_contents.split())
            return base64.b64decode(contents, validate=True), config.passphrase
        except (binascii.Error, ValueError) as exc:
            raise CertificateLoadError("inline certificate is not valid base64") from exc
    if config.local_file_path:
        logger.debug("loading signing certificate from %s", config.local_file_path)
        return _read_file(config.local_file_path), config.passphrase
    if config.production:
        raise ConfigurationError(
            "no certificate is available for signing: set %s or %s"
            % (cfg.ENV_LOCAL_FILE_CONTENTS, cfg.ENV_LOCAL_FILE_PATH)
        )
    logger.warning("no signing certificate configured, using the development certificate")
    return _read_file(DEVELOPMENT_CERTIFICATE), DEVELOPMENT_PASSPHRASE


def _pkcs11_signer(config):
    missing = [
        name
        for name, value in (
            (cfg.ENV_PKCS11_LIBRARY, config.pkcs11_library),
            (cfg.ENV_PKCS11_TOKEN, config.pkcs11_token),
            (cfg.ENV_PKCS11_KEY_ID, config.pkcs11_key_id),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError("PKCS#11 transport needs %s" % ", ".join(missing))
    try:
        key_id = bytes.fromhex(config.pkcs11_key_id)
    except ValueError:
        raise ConfigurationError(
            "%s is not hexadecimal: %r" % (cfg.ENV_PKCS11_KEY_ID, config.pkcs11_key_id)
        ) from None
    return PKCS11Signer(
        config.pkcs11_library, config.pkcs11_token, config.passphrase, key_id
    )


def resolve_signer(config):
    """
    Resolve the configured signing identity.

    Does the work every time it is called; use :class:`SignerResolver` to
    share one result across a process.
    """
    if config.transport == cfg.TRANSPORT_PKCS11:
        return _pkcs11_signer(config)
    if config.transport != cfg.TRANSPORT_LOCAL:
        raise ConfigurationError("unknown signing transport %r" % config.transport)
    data, passphrase = _local_source(config)
    signer = load_pkcs12(data, passphrase, config.validate_chain)
    logger.info(
        "signing as %s (%d chain certificates)",
        signer.cert.subject.rfc4514_string(),
        len(signer.othercerts),
    )
    return signer


class SignerResolver:
    """
    Resolves the signer once and hands out the same object afterwards.

    Construct one at process start and pass it to the engine. Failures are not
    cached: a failed resolution is attempted again on the next call.
    """

    def __init__(self, config, loader=resolve_signer):
        self.config = config
        self._loader = loader
        self._lock = threading.Lock()
        self._signer = None

    def resolve(self):
        signer = self._signer
        if signer is None:
            with self._lock:
                if self._signer is None:
                    self._signer = self._loader(self.config)
                signer = self._signer
        return signer
