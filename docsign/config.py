# *-* coding: utf-8 *-*
"""
Signing configuration read from the process environment.

The values are consumed once, when the engine and its resolvers are built
at process start. Changing the environment afterwards has no effect until
the process is restarted.
"""
import os

import attr

from docsign.errors import ConfigurationError

ENV_TRANSPORT = "NEXT_PRIVATE_SIGNING_TRANSPORT"
ENV_LOCAL_FILE_CONTENTS = "NEXT_PRIVATE_SIGNING_LOCAL_FILE_CONTENTS"
ENV_LOCAL_FILE_PATH = "NEXT_PRIVATE_SIGNING_LOCAL_FILE_PATH"
ENV_PASSPHRASE = "NEXT_PRIVATE_SIGNING_PASSPHRASE"
ENV_VALIDATE_CHAIN = "NEXT_PRIVATE_SIGNING_VALIDATE_CHAIN"
ENV_PKCS11_LIBRARY = "NEXT_PRIVATE_SIGNING_PKCS11_LIBRARY"
ENV_PKCS11_TOKEN = "NEXT_PRIVATE_SIGNING_PKCS11_TOKEN"
ENV_PKCS11_KEY_ID = "NEXT_PRIVATE_SIGNING_PKCS11_KEY_ID"
ENV_TIMESTAMP_AUTHORITY = "NEXT_PRIVATE_SIGNING_TIMESTAMP_AUTHORITY"
ENV_TIMESTAMP_TIMEOUT = "NEXT_PRIVATE_SIGNING_TIMESTAMP_TIMEOUT"
ENV_TIMESTAMP_REQUIRED = "NEXT_PRIVATE_SIGNING_TIMESTAMP_REQUIRED"
ENV_TIMESTAMP_USERNAME = "NEXT_PRIVATE_SIGNING_TIMESTAMP_USERNAME"
ENV_TIMESTAMP_PASSWORD = "NEXT_PRIVATE_SIGNING_TIMESTAMP_PASSWORD"
ENV_SIGNATURE_LENGTH = "NEXT_PRIVATE_SIGNING_SIGNATURE_LENGTH"
ENV_DIGEST = "NEXT_PRIVATE_SIGNING_DIGEST"
ENV_NODE_ENV = "NODE_ENV"

TRANSPORT_LOCAL = "local"
TRANSPORT_PKCS11 = "pkcs11"
TRANSPORTS = (TRANSPORT_LOCAL, TRANSPORT_PKCS11)

DIGESTS = ("sha256", "sha384", "sha512")

DEFAULT_TIMESTAMP_TIMEOUT = 10.0

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def one_of(values):
    def validate(obj, attribute, value):
        if value not in values:
            raise ConfigurationError(
                "{} must be one of {}, got {!r}".format(attribute.name, values, value)
            )
    return validate


def positive(obj, attribute, value):
    if value is not None and not value > 0:
        raise ConfigurationError(
            "{} must be positive, got {!r}".format(attribute.name, value)
        )


def parse_bool(name, value, default):
    if value is None or value.strip() == "":
        return default
    value = value.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError("{} is not a boolean: {!r}".format(name, value))


def parse_number(name, value, default, kind=float):
    if value is None or value.strip() == "":
        return default
    try:
        return kind(value.strip())
    except ValueError:
        raise ConfigurationError("{} is not a number: {!r}".format(name, value)) from None


def _empty_to_none(value):
    if value is None:
        return None
    value = value.strip()
    return value or None


@attr.s(frozen=True)
class SigningConfig(object):
    transport = attr.ib(default=TRANSPORT_LOCAL, validator=one_of(TRANSPORTS))
    local_file_contents = attr.ib(default=None, repr=False)
    local_file_path = attr.ib(default=None)
    passphrase = attr.ib(default="", repr=False)
    validate_chain = attr.ib(default=False)
    pkcs11_library = attr.ib(default=None)
    pkcs11_token = attr.ib(default=None)
    pkcs11_key_id = attr.ib(default=None)
    timestamp_authority = attr.ib(default="")
    timestamp_timeout = attr.ib(default=DEFAULT_TIMESTAMP_TIMEOUT, validator=positive)
    timestamp_required = attr.ib(default=True)
    timestamp_username = attr.ib(default=None)
    timestamp_password = attr.ib(default=None, repr=False)
    signature_length = attr.ib(default=None, validator=positive)
    digest = attr.ib(default="sha256", validator=one_of(DIGESTS))
    environment = attr.ib(default="development")

    @property
    def production(self):
        return self.environment == "production"

    @classmethod
    def from_env(cls, environ=None):
        """
        Build the configuration from ``environ`` (defaults to ``os.environ``).

        :raises ConfigurationError: for values that cannot be parsed.
        """
        env = os.environ if environ is None else environ
        return cls(
            transport=(env.get(ENV_TRANSPORT) or TRANSPORT_LOCAL).strip().lower(),
            local_file_contents=_empty_to_none(env.get(ENV_LOCAL_FILE_CONTENTS)),
            local_file_path=_empty_to_none(env.get(ENV_LOCAL_FILE_PATH)),
            passphrase=env.get(ENV_PASSPHRASE, ""),
            validate_chain=parse_bool(
                ENV_VALIDATE_CHAIN, env.get(ENV_VALIDATE_CHAIN), False
            ),
            pkcs11_library=_empty_to_none(env.get(ENV_PKCS11_LIBRARY)),
            pkcs11_token=_empty_to_none(env.get(ENV_PKCS11_TOKEN)),
            pkcs11_key_id=_empty_to_none(env.get(ENV_PKCS11_KEY_ID)),
            timestamp_authority=env.get(ENV_TIMESTAMP_AUTHORITY, ""),
            timestamp_timeout=parse_number(
                ENV_TIMESTAMP_TIMEOUT,
                env.get(ENV_TIMESTAMP_TIMEOUT),
                DEFAULT_TIMESTAMP_TIMEOUT,
            ),
            timestamp_required=parse_bool(
                ENV_TIMESTAMP_REQUIRED, env.get(ENV_TIMESTAMP_REQUIRED), True
            ),
            timestamp_username=_empty_to_none(env.get(ENV_TIMESTAMP_USERNAME)),
            timestamp_password=env.get(ENV_TIMESTAMP_PASSWORD) or None,
            signature_length=parse_number(
                ENV_SIGNATURE_LENGTH, env.get(ENV_SIGNATURE_LENGTH), None, int
            ),
            digest=(env.get(ENV_DIGEST) or "sha256").strip().lower(),
            environment=(env.get(ENV_NODE_ENV) or "development").strip().lower(),
        )
