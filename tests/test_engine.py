#!/usr/bin/env python3
# coding: utf-8
import base64
import unittest
from unittest import mock

import requests

from docsign import SignatureResult, SigningEngine, pdf
from docsign import config as cfg
from docsign.certificate import SignerResolver
from docsign.config import SigningConfig
from docsign.errors import (
    ConfigurationError,
    InvalidPdfStructure,
    OutputFormatError,
    TimestampAuthorityRejected,
    TimestampAuthorityUnreachable,
)
from docsign.pdf.verify import signature_contents, timestamp_token
from docsign.timestamp import TimestampAuthorityResolver

import documents
import test_cert
from fakes import FakeTSA


class Unreachable(object):
    def post(self, *args, **kwargs):
        raise requests.exceptions.ConnectTimeout("timed out")


def signing_time(content_info):
    for attr in content_info["content"]["signer_infos"][0]["signed_attrs"]:
        if attr["type"].native == "signing_time":
            return attr["values"][0].native


class EngineTests(unittest.TestCase):
    def setUp(self):
        self.datau = documents.blank_pdf()

    def engine(self, session=None, **settings):
        settings.setdefault(
            "local_file_contents",
            base64.b64encode(test_cert.user_p12(1)).decode("ascii"),
        )
        settings.setdefault("passphrase", test_cert.PASSWORD)
        config = SigningConfig(**settings)
        return SigningEngine(
            SignerResolver(config), TimestampAuthorityResolver(config, session=session), config
        )

    def test_sign(self):
        result = self.engine().sign(self.datau, reason="Approved", location="Remote")
        self.assertIsInstance(result, SignatureResult)
        self.assertIsInstance(result.data, bytes)
        self.assertTrue(result.data.startswith(self.datau))
        self.assertFalse(result.timestamped)
        self.assertEqual(result.byte_range[2] + result.byte_range[3], len(result.data))
        content_info, _ = signature_contents(result.data)
        self.assertEqual(signing_time(content_info), result.signed_at)
        for (hashok, signatureok, certok) in pdf.verify(result.data):
            self.assertTrue(hashok and signatureok)

    def test_sign_base64(self):
        engine = self.engine()
        result = engine.sign(base64.b64encode(self.datau).decode("ascii"), output_format="base64")
        self.assertIsInstance(result.data, str)
        datas = base64.b64decode(result.data)
        self.assertTrue(datas.startswith(self.datau))
        for (hashok, signatureok, certok) in pdf.verify(datas):
            self.assertTrue(hashok and signatureok)

    def test_development_certificate(self):
        config = SigningConfig()
        engine = SigningEngine(SignerResolver(config), TimestampAuthorityResolver(config), config)
        with self.assertLogs("docsign.certificate", "WARNING"):
            result = engine.sign(self.datau)
        for (hashok, signatureok, certok) in pdf.verify(result.data):
            self.assertTrue(hashok and signatureok)

    def test_signer_resolved_once(self):
        engine = self.engine()
        with mock.patch.object(
            engine.signers, "_loader", wraps=engine.signers._loader
        ) as loader:
            engine.sign(self.datau)
            engine.sign(self.datau)
        self.assertEqual(loader.call_count, 1)

    def test_signature_length_override(self):
        result = self.engine(signature_length=20000).sign(self.datau)
        _, br1, br2, _ = result.byte_range
        self.assertEqual(br2 - br1 - 2, 40000)

    def test_digest_from_config(self):
        result = self.engine(digest="sha384").sign(self.datau)
        content_info, _ = signature_contents(result.data)
        self.assertEqual(
            content_info["content"]["digest_algorithms"][0]["algorithm"].native, "sha384"
        )

    def test_timestamped(self):
        server = FakeTSA()
        engine = self.engine(
            session=server, timestamp_authority="http://tsa1.test/,http://tsa2.test/"
        )
        result = engine.sign(self.datau)
        self.assertTrue(result.timestamped)
        self.assertIn(server.requests[0]["url"], ("http://tsa1.test/", "http://tsa2.test/"))
        self.assertEqual(server.requests[0]["timeout"], cfg.DEFAULT_TIMESTAMP_TIMEOUT)
        content_info, _ = signature_contents(result.data)
        self.assertIsNotNone(timestamp_token(content_info))

    def test_timestamp_failure_is_fatal(self):
        engine = self.engine(session=Unreachable(), timestamp_authority="http://tsa.test/")
        with self.assertRaises(TimestampAuthorityUnreachable):
            engine.sign(self.datau)

    def test_timestamp_rejected_is_fatal(self):
        engine = self.engine(
            session=FakeTSA(status="rejection"), timestamp_authority="http://tsa.test/"
        )
        with self.assertRaises(TimestampAuthorityRejected):
            engine.sign(self.datau)

    def test_timestamp_best_effort(self):
        engine = self.engine(
            session=Unreachable(),
            timestamp_authority="http://tsa.test/",
            timestamp_required=False,
        )
        with self.assertLogs("docsign.engine", "WARNING") as logs:
            result = engine.sign(self.datau)
        self.assertIn("http://tsa.test/", logs.output[0])
        self.assertFalse(result.timestamped)
        content_info, _ = signature_contents(result.data)
        self.assertIsNone(timestamp_token(content_info))
        for (hashok, signatureok, certok) in pdf.verify(result.data):
            self.assertTrue(hashok and signatureok)

    def test_production_without_certificate_fails_before_parsing(self):
        config = SigningConfig(environment="production")
        engine = SigningEngine(SignerResolver(config), TimestampAuthorityResolver(config), config)
        with mock.patch("docsign.engine.reserve_signature_space") as reserve:
            with self.assertRaises(ConfigurationError):
                engine.sign(b"not even a pdf")
        reserve.assert_not_called()

    def test_invalid_document(self):
        with self.assertRaises(InvalidPdfStructure):
            self.engine().sign(b"not a pdf")

    def test_unknown_output_format(self):
        signers = mock.Mock()
        engine = SigningEngine(signers, mock.Mock(), SigningConfig())
        with self.assertRaises(OutputFormatError):
            engine.sign(self.datau, output_format="hex")
        signers.resolve.assert_not_called()

    def test_from_env(self):
        engine = SigningEngine.from_env(
            {
                cfg.ENV_LOCAL_FILE_CONTENTS: base64.b64encode(test_cert.user_p12(2)).decode(
                    "ascii"
                ),
                cfg.ENV_PASSPHRASE: test_cert.PASSWORD,
                cfg.ENV_DIGEST: "sha512",
            }
        )
        self.assertEqual(engine.config.digest, "sha512")
        self.assertEqual(engine.signers.resolve().cert, test_cert.user(2)[1])
        self.assertIsNone(engine.timestamps.get_timestamp_authority())


if __name__ == "__main__":
    unittest.main()
