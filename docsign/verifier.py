# *-* coding: utf-8 *-*
import datetime
import hashlib
import logging

import certifi
from asn1crypto import cms, core, pem
from cryptography import x509 as cx509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError

logger = logging.getLogger(__name__)


def _trusted(cert):
    if isinstance(cert, cx509.Certificate):
        return cert
    return cx509.load_pem_x509_certificate(cert)


class VerifyData(object):
    def __init__(self, trustedCerts=None):
        with open(certifi.where(), "rb") as pems:
            certs = cx509.load_pem_x509_certificates(pems.read())
        if trustedCerts is not None:
            for cert in trustedCerts:
                certs.append(_trusted(cert))
        store = Store(certs)
        self.verifier = (
            PolicyBuilder()
            .store(store)
            .time(datetime.datetime.utcnow())
            .max_chain_depth(4)
            .build_client_verifier()
        )

    def _verify_signature(self, public_key, sigalgo, algo, signature, signedData):
        sigalgoname = sigalgo.signature_algo
        try:
            if isinstance(public_key, ec.EllipticCurvePublicKey):
                public_key.verify(
                    signature, signedData, ec.ECDSA(getattr(hashes, algo.upper())())
                )
            elif sigalgoname == "rsassa_pss":
                parameters = sigalgo["parameters"]
                salgo = parameters["hash_algorithm"].native["algorithm"].upper()
                mgf = getattr(
                    padding, parameters["mask_gen_algorithm"].native["algorithm"].upper()
                )(getattr(hashes, salgo)())
                salt_length = parameters["salt_length"].native
                public_key.verify(
                    signature,
                    signedData,
                    padding.PSS(mgf, salt_length),
                    getattr(hashes, salgo)(),
                )
            elif sigalgoname == "rsassa_pkcs1v15":
                public_key.verify(
                    signature,
                    signedData,
                    padding.PKCS1v15(),
                    getattr(hashes, algo.upper())(),
                )
            else:
                raise ValueError("Unknown signature algorithm %s" % sigalgoname)
        except InvalidSignature:
            return False
        return True

    def verify(self, datas, datau):
        signed_data = cms.ContentInfo.load(datas, strict=False)["content"]

        signer_info = signed_data["signer_infos"][0]
        signature = signer_info["signature"].native
        algo = signed_data["digest_algorithms"][0]["algorithm"].native
        attrs = signer_info["signed_attrs"]
        mdData = getattr(hashlib, algo)(datau).digest()
        if attrs is not None and not isinstance(attrs, core.Void):
            mdSigned = None
            for attr in attrs:
                if attr["type"].native == "message_digest":
                    mdSigned = attr["values"].native[0]
            signedData = attrs.dump()
            signedData = b"\x31" + signedData[1:]
        else:
            mdSigned = mdData
            signedData = datau
        hashok = mdData == mdSigned

        cert = None
        othercerts = []
        serial = signer_info["sid"].native["serial_number"]
        for pdfcert in signed_data["certificates"]:
            loaded = cx509.load_pem_x509_certificate(
                pem.armor("CERTIFICATE", pdfcert.chosen.dump())
            )
            if cert is None and serial == pdfcert.native["tbs_certificate"]["serial_number"]:
                cert = loaded
            else:
                othercerts.append(loaded)
        if cert is None:
            raise ValueError("signing certificate is not included in the signature")

        signatureok = self._verify_signature(
            cert.public_key(), signer_info["signature_algorithm"], algo, signature, signedData
        )

        try:
            self.verifier.verify(cert, othercerts)
            certok = True
        except VerificationError as ex:
            logger.debug(
                "failed certificate verification of %s: %s", cert.subject.rfc4514_string(), ex
            )
            certok = False
        return (hashok, signatureok, certok)


def verify(datas: bytes, datau: bytes, certs=None) -> tuple:
    """
    Verify a detached CMS signature.

    :param datas: DER encoded ContentInfo, trailing padding is ignored
    :param datau: the signed bytes
    :param certs: additional trust anchors (cryptography certificates or PEM bytes)
    :return:
        hashok, signatureok, certok

        hashok : bool
            True if the hash matches.
        signatureok : bool
            True if the signature is valid.
        certok : bool
            True if the certificate used for signing is trusted and valid.
    """
    cls = VerifyData(certs)
    return cls.verify(datas, datau)
