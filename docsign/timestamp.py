# *-* coding: utf-8 *-*
"""
RFC 3161 timestamp authority client.

The authority receives the digest of the CMS signature value and answers
with a timestamp token, which is stored as the ``signature_time_stamp_token``
unsigned attribute of the signer info.
"""
import hashlib
import logging
import random
import secrets
import threading
from base64 import b64encode

import requests
from asn1crypto import algos, cms, core, tsp

from docsign.errors import TimestampAuthorityRejected, TimestampAuthorityUnreachable

logger = logging.getLogger(__name__)

GRANTED = ("granted", "granted_with_mods")


class TimeStampResp(core.Sequence):
    """RFC 3161 reply; the token is absent unless the request was granted"""

    _fields = [
        ("status", tsp.PKIStatusInfo),
        ("time_stamp_token", cms.ContentInfo, {"optional": True}),
    ]


def parse_authority_urls(value):
    if not value:
        return []
    return [url.strip() for url in value.split(",") if url.strip()]


def timestamp_attributes(token):
    return [
        cms.CMSAttribute(
            {
                "type": cms.CMSAttributeType("signature_time_stamp_token"),
                "values": cms.SetOfContentInfo(
                    [
                        cms.ContentInfo(
                            {
                                "content_type": cms.ContentType("signed_data"),
                                "content": token["content"],
                            }
                        )
                    ]
                ),
            }
        )
    ]


class TimestampAuthority(object):
    def __init__(self, url, timeout=10.0, credentials=None, session=None):
        self.url = url
        self.timeout = timeout
        self.credentials = credentials
        self.session = session if session is not None else requests

    def __repr__(self):
        return "TimestampAuthority(%r)" % self.url

    def request_headers(self):
        headers = {"Content-Type": "application/timestamp-query"}
        if self.credentials is not None:
            username = self.credentials.get("username", None)
            password = self.credentials.get("password", None)
            if username and password:
                auth_header_value = b64encode(
                    bytes(username + ":" + password, "utf-8")
                ).decode("ascii")
                headers["Authorization"] = f"Basic {auth_header_value}"
        return headers

    def build_request(self, digest, hashalgo, nonce):
        return tsp.TimeStampReq(
            {
                "version": 1,
                "message_imprint": tsp.MessageImprint(
                    {
                        "hash_algorithm": algos.DigestAlgorithm({"algorithm": hashalgo}),
                        "hashed_message": digest,
                    }
                ),
                "nonce": nonce,
                "cert_req": True,
            }
        )

    def request_token(self, digest, hashalgo="sha256"):
        """
        Obtain a timestamp token over ``digest``.

        :param digest: hash of the data being timestamped
        :param hashalgo: name of the algorithm that produced ``digest``
        :return: asn1crypto.cms.ContentInfo holding the token
        :raises TimestampAuthorityUnreachable: connection failure or timeout
        :raises TimestampAuthorityRejected: any answer other than a granted token
            for this exact request
        """
        nonce = secrets.randbits(63)
        tspreq = self.build_request(digest, hashalgo, nonce)
        logger.debug("requesting timestamp from %s", self.url)
        try:
            tspresp = self.session.post(
                self.url,
                data=tspreq.dump(),
                headers=self.request_headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise TimestampAuthorityUnreachable(
                "timestamp authority %s did not answer within %ss" % (self.url, self.timeout),
                self.url,
            ) from exc
        except (requests.exceptions.RequestException, IOError) as exc:
            raise TimestampAuthorityUnreachable(
                "cannot reach timestamp authority %s: %s" % (self.url, exc), self.url
            ) from exc

        if tspresp.status_code != 200:
            raise TimestampAuthorityRejected(
                "timestamp authority %s answered HTTP %d" % (self.url, tspresp.status_code),
                self.url,
            )
        if tspresp.headers.get("Content-Type", None) != "application/timestamp-reply":
            raise TimestampAuthorityRejected(
                "TimeStampResponse has invalid content type", self.url
            )
        try:
            response = TimeStampResp.load(tspresp.content)
            status_info = response["status"]
            status = status_info["status"].native
            reason = status_info["status_string"].native
        except (ValueError, TypeError, KeyError) as exc:
            raise TimestampAuthorityRejected(
                "TimeStampResponse cannot be decoded", self.url
            ) from exc
        if status not in GRANTED:
            message = "TimeStampResponse status is not granted: %s" % status
            if reason:
                message += " (%s)" % "; ".join(reason)
            raise TimestampAuthorityRejected(message, self.url)
        try:
            token = response["time_stamp_token"]
            if isinstance(token, core.Void):
                raise ValueError("granted response carries no token")
            tst_info = token["content"]["encap_content_info"]["content"].parsed
            imprint = tst_info["message_imprint"]
            answered_nonce = tst_info["nonce"].native
            answered_digest = imprint["hashed_message"].native
            answered_algo = imprint["hash_algorithm"]["algorithm"].native
        except (ValueError, TypeError, KeyError) as exc:
            raise TimestampAuthorityRejected(
                "TimeStampResponse cannot be decoded", self.url
            ) from exc
        if answered_nonce != nonce:
            raise TimestampAuthorityRejected("TimeStampResponse nonce mismatch", self.url)
        if answered_digest != digest or answered_algo != hashalgo:
            raise TimestampAuthorityRejected(
                "TimeStampResponse covers a different message imprint", self.url
            )
        logger.debug("timestamp granted by %s at %s", self.url, tst_info["gen_time"].native)
        return token

    def timestamp(self, signature, hashalgo="sha256"):
        """unsigned attributes carrying a token over ``signature``"""
        digest = getattr(hashlib, hashalgo)(signature).digest()
        return timestamp_attributes(self.request_token(digest, hashalgo))


class TimestampAuthorityResolver:
    """
    Builds the configured authorities once and picks one per signing call.

    The choice is uniformly random and only spreads load; a failed authority is
    not retried against another one.
    """

    def __init__(self, config, rng=None, session=None):
        self.config = config
        self._rng = rng if rng is not None else random.SystemRandom()
        self._session = session
        self._lock = threading.Lock()
        self._authorities = None

    @property
    def authorities(self):
        authorities = self._authorities
        if authorities is None:
            with self._lock:
                if self._authorities is None:
                    credentials = None
                    if self.config.timestamp_username:
                        credentials = {
                            "username": self.config.timestamp_username,
                            "password": self.config.timestamp_password,
                        }
                    self._authorities = tuple(
                        TimestampAuthority(
                            url,
                            self.config.timestamp_timeout,
                            credentials=credentials,
                            session=self._session,
                        )
                        for url in parse_authority_urls(self.config.timestamp_authority)
                    )
                    logger.info(
                        "%d timestamp authorities configured", len(self._authorities)
                    )
                authorities = self._authorities
        return authorities

    def get_timestamp_authority(self):
        authorities = self.authorities
        if not authorities:
            return None
        return self._rng.choice(authorities)
