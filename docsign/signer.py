# *-* coding: utf-8 *-*
import hashlib
import logging
from datetime import datetime

from asn1crypto import algos, cms, core, pem, tsp, util, x509
from cryptography.hazmat.primitives import serialization

from docsign.errors import SignatureComputationError

logger = logging.getLogger(__name__)


def cert2asn(cert, cert_bytes=True):
    if isinstance(cert, x509.Certificate):
        return cert
    if cert_bytes:
        cert_bytes = cert.public_bytes(serialization.Encoding.PEM)
    else:
        cert_bytes = cert
    if pem.detect(cert_bytes):
        _, _, cert_bytes = pem.unarmor(cert_bytes)
    return x509.Certificate.load(cert_bytes)


def signing_certificate_v2(cert):
    return cms.CMSAttribute(
        {
            "type": cms.CMSAttributeType("signing_certificate_v2"),
            "values": [
                tsp.SigningCertificateV2(
                    {
                        "certs": [
                            tsp.ESSCertIDv2(
                                {
                                    "hash_algorithm": algos.DigestAlgorithm(
                                        {"algorithm": "sha256"}
                                    ),
                                    "cert_hash": hashlib.sha256(cert.dump()).digest(),
                                    "issuer_serial": tsp.IssuerSerial(
                                        {
                                            "issuer": (
                                                x509.GeneralName(
                                                    {"directory_name": cert.issuer}
                                                ),
                                            ),
                                            "serial_number": cert.serial_number,
                                        }
                                    ),
                                }
                            ),
                        ]
                    }
                ),
            ],
        }
    )


def signed_attributes(cert, signed_value, signed_time):
    return [
        cms.CMSAttribute(
            {
                "type": cms.CMSAttributeType("content_type"),
                "values": ("data",),
            }
        ),
        cms.CMSAttribute(
            {
                "type": cms.CMSAttributeType("message_digest"),
                "values": (signed_value,),
            }
        ),
        cms.CMSAttribute(
            {
                "type": cms.CMSAttributeType("signing_time"),
                "values": (cms.Time({"utc_time": core.UTCTime(signed_time)}),),
            }
        ),
        signing_certificate_v2(cert),
    ]


def signature_algorithm(key_algorithm, hashalgo):
    if key_algorithm == "ec":
        return algos.SignedDigestAlgorithm({"algorithm": "%s_ecdsa" % hashalgo})
    return algos.SignedDigestAlgorithm({"algorithm": "rsassa_pkcs1v15"})


def sign(
    datau,
    signer,
    hashalgo,
    signed_value=None,
    signing_time=None,
    timestamp=None,
):
    """
    Build a detached CMS SignedData over ``datau``.

    :param datau: signed bytes, ignored when ``signed_value`` is given
    :param signer: docsign.hsm.BaseSigner holding the key and certificates
    :param hashalgo: sha256, sha384 or sha512
    :param signed_value: precomputed digest of the signed bytes
    :param signing_time: aware datetime stored in the signing_time attribute
    :param timestamp: docsign.timestamp.TimestampAuthority or None
    :return: DER encoded ContentInfo
    :raises SignatureComputationError: when the certificate or key is unusable
    :raises TimestampAuthorityError: when the authority fails
    """
    if signed_value is None:
        signed_value = getattr(hashlib, hashalgo)(datau).digest()
    if signing_time is None:
        signing_time = datetime.now(tz=util.timezone.utc)

    keyid, cert = signer.certificate()
    try:
        cert = cert2asn(cert)
        certificates = [cert]
        for othercert in signer.certificates():
            certificates.append(cert2asn(othercert))
    except (ValueError, TypeError) as exc:
        raise SignatureComputationError("signing certificate cannot be encoded") from exc

    signer_info = {
        "version": "v1",
        "sid": cms.SignerIdentifier(
            {
                "issuer_and_serial_number": cms.IssuerAndSerialNumber(
                    {
                        "issuer": cert.issuer,
                        "serial_number": cert.serial_number,
                    }
                ),
            }
        ),
        "digest_algorithm": algos.DigestAlgorithm({"algorithm": hashalgo}),
        "signature_algorithm": signature_algorithm(signer.key_algorithm, hashalgo),
        "signed_attrs": signed_attributes(cert, signed_value, signing_time),
        "signature": b"",
    }

    config = {
        "version": "v1",
        "digest_algorithms": cms.DigestAlgorithms(
            (algos.DigestAlgorithm({"algorithm": hashalgo}),)
        ),
        "encap_content_info": {
            "content_type": "data",
        },
        "certificates": certificates,
        "signer_infos": [
            signer_info,
        ],
    }

    datas = cms.ContentInfo(
        {
            "content_type": cms.ContentType("signed_data"),
            "content": cms.SignedData(config),
        }
    )
    tosign = datas["content"]["signer_infos"][0]["signed_attrs"].dump()
    tosign = b"\x31" + tosign[1:]
    signed_value_signature = signer.sign(keyid, tosign, hashalgo)
    logger.debug("signature value computed, %d bytes", len(signed_value_signature))

    if timestamp is not None:
        datas["content"]["signer_infos"][0]["unsigned_attrs"] = timestamp.timestamp(
            signed_value_signature, hashalgo
        )

    datas["content"]["signer_infos"][0]["signature"] = signed_value_signature
    return datas.dump()
