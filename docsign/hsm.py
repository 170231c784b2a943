# *-* coding: utf-8 *-*
import logging
import threading

import PyKCS11

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec, utils

from docsign.errors import (
    CertificateLoadError,
    CertificateNotFoundError,
    SignatureComputationError,
)

logger = logging.getLogger(__name__)


class BaseSigner:
    def certificate(self):
        """
        signing certificate

        :return: keyid, cryptography.x509.Certificate
        """
        raise NotImplementedError()

    def certificates(self):
        """
        :return: list of cryptography.x509.Certificate forming the chain above
            the signing certificate, issuer first
        """
        return []

    @property
    def key_algorithm(self):
        """'rsa' or 'ec', taken from the signing certificate"""
        _, cert = self.certificate()
        if isinstance(cert.public_key(), ec.EllipticCurvePublicKey):
            return "ec"
        return "rsa"

    def sign(self, keyid, data, hashalgo):
        """
        sign

        :param keyid: the keyid as returned by certificate()
        :param data: bytes to be hashed and signed
        :param hashalgo: hash algo name, e.g. sha256
        :return: signature value (DER for ECDSA)
        """
        raise NotImplementedError()


class PKCS11Signer(BaseSigner):
    """
    Signs with a private key that never leaves a PKCS#11 token (HSM, smart
    card, cloud KMS exposing a PKCS#11 module).

    The certificate with CKA_ID equal to ``key_id`` is the signing certificate;
    the remaining certificates on the token are offered as chain candidates.
    """

    def __init__(self, library, token, pin, key_id, pkcs11=None):
        if pkcs11 is None:
            pkcs11 = PyKCS11.PyKCS11Lib()
            try:
                pkcs11.load(library)
            except PyKCS11.PyKCS11Error as exc:
                raise CertificateLoadError(
                    "cannot load PKCS#11 module %s" % library
                ) from exc
        self.pkcs11 = pkcs11
        self.token = token
        self.key_id = key_id
        self._pin = pin
        self._lock = threading.Lock()
        self.session = None
        self._cert, self._chain = self._load_certificates()

    def getSlot(self, label):
        slots = self.pkcs11.getSlotList(tokenPresent=True)
        for slot in slots:
            info = self.pkcs11.getTokenInfo(slot)
            try:
                if info.label.split("\0")[0].strip() == label:
                    return slot
            except AttributeError:
                continue
        return None

    def login(self):
        slot = self.getSlot(self.token)
        if slot is None:
            raise CertificateNotFoundError("PKCS#11 token %r not present" % self.token)
        self.session = self.pkcs11.openSession(
            slot, PyKCS11.CKF_SERIAL_SESSION | PyKCS11.CKF_RW_SESSION
        )
        self.session.login(self._pin)

    def logout(self):
        if self.session is not None:
            self.session.logout()
            self.session.closeSession()
            self.session = None

    def _load_certificates(self):
        with self._lock:
            try:
                self.login()
                try:
                    objects = self.session.findObjects(
                        [(PyKCS11.CKA_CLASS, PyKCS11.CKO_CERTIFICATE)]
                    )
                    leaf = None
                    others = []
                    for obj in objects:
                        value, keyid = self.session.getAttributeValue(
                            obj, [PyKCS11.CKA_VALUE, PyKCS11.CKA_ID]
                        )
                        cert = x509.load_der_x509_certificate(bytes(value))
                        if bytes(keyid) == self.key_id:
                            leaf = cert
                        else:
                            others.append(cert)
                finally:
                    self.logout()
            except PyKCS11.PyKCS11Error as exc:
                raise CertificateLoadError("cannot read certificates from token") from exc
            except ValueError as exc:
                raise CertificateLoadError("token holds a malformed certificate") from exc
        if leaf is None:
            raise CertificateNotFoundError(
                "no certificate with id %s on token %r" % (self.key_id.hex(), self.token)
            )
        chain = []
        current = leaf
        while True:
            issuer = next(
                (
                    c
                    for c in others
                    if c.subject == current.issuer and c not in chain and c != current
                ),
                None,
            )
            if issuer is None:
                break
            chain.append(issuer)
            current = issuer
        logger.info(
            "using PKCS#11 token %r, certificate %s", self.token, leaf.subject.rfc4514_string()
        )
        return leaf, chain

    def certificate(self):
        return self.key_id, self._cert

    def certificates(self):
        return list(self._chain)

    def sign(self, keyid, data, hashalgo):
        ecdsa = self.key_algorithm == "ec"
        if ecdsa:
            mech = getattr(PyKCS11, "CKM_ECDSA_%s" % hashalgo.upper())
        else:
            mech = getattr(PyKCS11, "CKM_%s_RSA_PKCS" % hashalgo.upper())
        with self._lock:
            try:
                self.login()
                try:
                    keys = self.session.findObjects(
                        [
                            (PyKCS11.CKA_CLASS, PyKCS11.CKO_PRIVATE_KEY),
                            (PyKCS11.CKA_ID, keyid),
                        ]
                    )
                    if not keys:
                        raise SignatureComputationError(
                            "no private key with id %s on token" % keyid.hex()
                        )
                    sig = bytes(self.session.sign(keys[0], data, PyKCS11.Mechanism(mech, None)))
                finally:
                    self.logout()
            except PyKCS11.PyKCS11Error as exc:
                raise SignatureComputationError("token refused to sign") from exc
        if ecdsa:
            # tokens return the raw r || s concatenation
            half = len(sig) // 2
            sig = utils.encode_dss_signature(
                int.from_bytes(sig[:half], "big"), int.from_bytes(sig[half:], "big")
            )
        return sig
