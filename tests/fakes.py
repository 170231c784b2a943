# *-* coding: utf-8 *-*
"""In-process stand-ins for a timestamp authority and a PKCS#11 token."""
import hashlib
import itertools
from datetime import datetime, timezone
from unittest import mock

import PyKCS11
from asn1crypto import algos, cms, core, tsp, x509 as asn1x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, utils

import test_cert

_serials = itertools.count(1)


def asn1cert(cert):
    return asn1x509.Certificate.load(cert.public_bytes(serialization.Encoding.DER))


def der_sequence(content):
    length = len(content)
    if length < 0x80:
        header = bytes((length,))
    else:
        size = (length.bit_length() + 7) // 8
        header = bytes((0x80 | size,)) + length.to_bytes(size, "big")
    return b"\x30" + header + content


class FakeTSA(object):
    """
    Answers TimeStampReq bodies like an RFC 3161 server would.

    ``tamper`` may rewrite the TSTInfo dictionary before it is signed.
    """

    def __init__(
        self,
        status="granted",
        status_code=200,
        content_type="application/timestamp-reply",
        body=None,
        tamper=None,
    ):
        self.key, cert = test_cert.tsa()
        self.cert = asn1cert(cert)
        self.chain = [asn1cert(test_cert.authority().ca_sub_cert)]
        self.status = status
        self.status_code = status_code
        self.content_type = content_type
        self.body = body
        self.tamper = tamper
        self.requests = []

    def token(self, req):
        message_imprint = req["message_imprint"]
        md_algorithm = message_imprint["hash_algorithm"]["algorithm"].native
        dt = datetime.now(tz=timezone.utc).replace(microsecond=0)
        tst_info = {
            "version": "v1",
            "policy": tsp.ObjectIdentifier("1.3.6.1.4.1.4146.2.2"),
            "message_imprint": message_imprint,
            "serial_number": next(_serials),
            "gen_time": dt,
            "nonce": req["nonce"],
        }
        if self.tamper is not None:
            self.tamper(tst_info)
        tst_info_data = tsp.TSTInfo(tst_info).dump()
        signed_attrs = cms.CMSAttributes(
            [
                cms.CMSAttribute({"type": "content_type", "values": ["tst_info"]}),
                cms.CMSAttribute(
                    {
                        "type": "signing_time",
                        "values": [cms.Time({"utc_time": core.UTCTime(dt)})],
                    }
                ),
                cms.CMSAttribute(
                    {
                        "type": "message_digest",
                        "values": [getattr(hashlib, md_algorithm)(tst_info_data).digest()],
                    }
                ),
            ]
        )
        signature = self.key.sign(
            signed_attrs.dump(), padding.PKCS1v15(), getattr(hashes, md_algorithm.upper())()
        )
        digest_algorithm = algos.DigestAlgorithm({"algorithm": md_algorithm})
        signer_info = cms.SignerInfo(
            {
                "version": "v1",
                "sid": cms.SignerIdentifier(
                    {
                        "issuer_and_serial_number": cms.IssuerAndSerialNumber(
                            {
                                "issuer": self.cert.issuer,
                                "serial_number": self.cert.serial_number,
                            }
                        )
                    }
                ),
                "digest_algorithm": digest_algorithm,
                "signature_algorithm": algos.SignedDigestAlgorithm(
                    {"algorithm": "rsassa_pkcs1v15"}
                ),
                "signed_attrs": signed_attrs,
                "signature": signature,
            }
        )
        return cms.ContentInfo(
            {
                "content_type": cms.ContentType("signed_data"),
                "content": cms.SignedData(
                    {
                        "version": "v3",
                        "digest_algorithms": cms.DigestAlgorithms((digest_algorithm,)),
                        "encap_content_info": cms.EncapsulatedContentInfo(
                            {
                                "content_type": cms.ContentType("tst_info"),
                                "content": cms.ParsableOctetString(tst_info_data),
                            }
                        ),
                        "certificates": [self.cert] + self.chain,
                        "signer_infos": [signer_info],
                    }
                ),
            }
        )

    def respond(self, data):
        if self.body is not None:
            return self.body
        req = tsp.TimeStampReq.load(data)
        if self.status not in ("granted", "granted_with_mods"):
            # a refusal carries no token, which tsp.TimeStampResp cannot express
            status = tsp.PKIStatusInfo(
                {
                    "status": tsp.PKIStatus(self.status),
                    "status_string": ["request refused by docsign test TSA"],
                }
            )
            return der_sequence(status.dump())
        return tsp.TimeStampResp(
            {
                "status": tsp.PKIStatusInfo({"status": tsp.PKIStatus(self.status)}),
                "time_stamp_token": self.token(req),
            }
        ).dump()

    def post(self, url, data=None, headers=None, timeout=None):
        self.requests.append({"url": url, "headers": headers, "timeout": timeout})
        response = mock.Mock()
        response.status_code = self.status_code
        response.headers = {"Content-Type": self.content_type}
        response.content = self.respond(data)
        return response


class FakeSession(object):
    """PyKCS11.Session over in-memory keys and certificates."""

    def __init__(self, token):
        self.token = token

    def login(self, pin):
        if pin != self.token.pin:
            raise PyKCS11.PyKCS11Error(PyKCS11.CKR_PIN_INCORRECT)

    def logout(self):
        pass

    def closeSession(self):
        self.token.closed += 1

    def findObjects(self, template):
        if self.token.fail:
            raise PyKCS11.PyKCS11Error(PyKCS11.CKR_DEVICE_ERROR)
        query = dict(template)
        if query[PyKCS11.CKA_CLASS] == PyKCS11.CKO_CERTIFICATE:
            return [("cert", keyid) for keyid in self.token.certs]
        keyid = bytes(query[PyKCS11.CKA_ID])
        if keyid in self.token.keys:
            return [("key", keyid)]
        return []

    def getAttributeValue(self, obj, attrs):
        _, keyid = obj
        cert = self.token.certs[keyid]
        return [
            list(cert.public_bytes(serialization.Encoding.DER)),
            list(keyid),
        ]

    def sign(self, obj, data, mechanism):
        _, keyid = obj
        key = self.token.keys[keyid]
        if isinstance(key, ec.EllipticCurvePrivateKey):
            r, s = utils.decode_dss_signature(key.sign(data, ec.ECDSA(hashes.SHA256())))
            size = (key.curve.key_size + 7) // 8
            return list(r.to_bytes(size, "big") + s.to_bytes(size, "big"))
        return list(key.sign(data, padding.PKCS1v15(), hashes.SHA256()))


class FakeTokenInfo(object):
    def __init__(self, label):
        self.label = label.ljust(32)


class FakePKCS11Lib(object):
    """
    PyKCS11.PyKCS11Lib with one token.

    ``certs`` and ``keys`` map CKA_ID bytes to cryptography objects.
    """

    def __init__(self, label="docsign", pin="1234", certs=None, keys=None):
        self.label = label
        self.pin = pin
        self.certs = dict(certs or {})
        self.keys = dict(keys or {})
        self.fail = False
        self.closed = 0

    def load(self, library):
        self.library = library

    def getSlotList(self, tokenPresent=False):
        return [0]

    def getTokenInfo(self, slot):
        return FakeTokenInfo(self.label)

    def openSession(self, slot, flags=0):
        return FakeSession(self)
