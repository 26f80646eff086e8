"""Signature verification binding a challenge message to an SS58 address."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Final

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from substrateinterface import Keypair, KeypairType
from substrateinterface.utils.ss58 import is_valid_ss58_address, ss58_decode

logger = logging.getLogger(__name__)

CHALLENGE_PREFIX: Final[str] = "IPFS-AUTH"
PUBKEY_LENGTH_BYTES: Final[int] = 32
SIGNATURE_LENGTH_BYTES: Final[int] = 64
# Address prefix used only to build verification keys; not an address check.
GENERIC_SS58_FORMAT: Final[int] = 42

_BASE58_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")
_SELF_TEST_SEED: Final[bytes] = bytes(range(32))
_SELF_TEST_MESSAGE: Final[bytes] = b"ipfs-gate self-test"


def build_challenge_message(nonce: str, timestamp: int, community_id: str) -> str:
    """Return the exact string a client must sign to answer a challenge."""
    return f"{CHALLENGE_PREFIX}:{nonce}:{timestamp}:{community_id}"


def decode_signature(signature: str) -> bytes:
    """Decode a hex signature, with or without a ``0x`` prefix.

    Raises:
        ValueError: If the value is not hex or not 64 bytes long.
    """
    cleaned = signature.strip()
    if cleaned[:2].lower() == "0x":
        cleaned = cleaned[2:]
    try:
        decoded = bytes.fromhex(cleaned)
    except ValueError as err:
        raise ValueError(f"Invalid hex encoding: {err}") from err
    if len(decoded) != SIGNATURE_LENGTH_BYTES:
        raise ValueError(f"Signatures must be {SIGNATURE_LENGTH_BYTES} bytes")
    return decoded


class SignatureScheme(ABC):
    """A public-key signature algorithm over raw 32-byte public keys."""

    name: str

    @abstractmethod
    def verify(self, message: bytes, signature: bytes, public_key: bytes) -> bool:
        """Return True if `signature` is valid for `message` under `public_key`."""

    @abstractmethod
    def self_test(self) -> None:
        """Sign and verify a fixed message, raising if the backend is unusable."""


class Sr25519Scheme(SignatureScheme):
    """Schnorrkel/Ristretto signatures as used by Substrate accounts."""

    name = "sr25519"

    def verify(self, message: bytes, signature: bytes, public_key: bytes) -> bool:
        try:
            keypair = Keypair(
                public_key=public_key,
                ss58_format=GENERIC_SS58_FORMAT,
                crypto_type=KeypairType.SR25519,
            )
            return bool(keypair.verify(message, signature))
        except ValueError:
            return False

    def self_test(self) -> None:
        keypair = Keypair.create_from_seed(
            "0x" + _SELF_TEST_SEED.hex(),
            crypto_type=KeypairType.SR25519,
        )
        signature = keypair.sign(_SELF_TEST_MESSAGE)
        if not self.verify(_SELF_TEST_MESSAGE, signature, keypair.public_key):
            raise RuntimeError("sr25519 backend failed its self-test")


class Ed25519Scheme(SignatureScheme):
    """Ed25519 signatures verified with `cryptography`."""

    name = "ed25519"

    def verify(self, message: bytes, signature: bytes, public_key: bytes) -> bool:
        try:
            pubkey = Ed25519PublicKey.from_public_bytes(public_key)
            pubkey.verify(signature, message)
            return True
        except (InvalidSignature, ValueError):
            return False

    def self_test(self) -> None:
        private_key = Ed25519PrivateKey.from_private_bytes(_SELF_TEST_SEED)
        signature = private_key.sign(_SELF_TEST_MESSAGE)
        public_key = private_key.public_key().public_bytes_raw()
        if not self.verify(_SELF_TEST_MESSAGE, signature, public_key):
            raise RuntimeError("ed25519 backend failed its self-test")


_SCHEMES: Final[dict[str, type[SignatureScheme]]] = {
    Sr25519Scheme.name: Sr25519Scheme,
    Ed25519Scheme.name: Ed25519Scheme,
}


class SignatureVerifier:
    """Validates SS58 addresses and signatures over challenge messages.

    Obtain a ready instance from :func:`init_signature_verifier`.
    """

    def __init__(self, scheme: SignatureScheme, ss58_format: int | None = None) -> None:
        self._scheme = scheme
        self._ss58_format = ss58_format

    @property
    def scheme_name(self) -> str:
        return self._scheme.name

    build_challenge_message = staticmethod(build_challenge_message)

    def is_valid_address_format(self, address: str) -> bool:
        """Return True if `address` is a well-formed SS58 address."""
        if not address or not _BASE58_PATTERN.match(address):
            return False
        try:
            return bool(is_valid_ss58_address(address, valid_ss58_format=self._ss58_format))
        except Exception:
            return False

    def decode_address(self, address: str) -> bytes:
        """Return the raw public key encoded in `address`.

        Raises:
            ValueError: If the address is malformed.
        """
        if not self.is_valid_address_format(address):
            raise ValueError("Invalid SS58 address")
        public_key = bytes.fromhex(
            ss58_decode(address, valid_ss58_format=self._ss58_format).removeprefix("0x")
        )
        if len(public_key) != PUBKEY_LENGTH_BYTES:
            raise ValueError(f"Public keys must be {PUBKEY_LENGTH_BYTES} bytes")
        return public_key

    def verify(self, message: str, signature: str, address: str) -> bool:
        """Return True if `signature` over `message` was made by `address`'s key.

        Malformed addresses and signatures yield False.
        """
        try:
            public_key = self.decode_address(address)
            signature_bytes = decode_signature(signature)
        except ValueError:
            return False
        return self._scheme.verify(message.encode("utf-8"), signature_bytes, public_key)


def init_signature_verifier(
    scheme: str = "sr25519",
    ss58_format: int | None = None,
) -> SignatureVerifier:
    """Resolve `scheme`, check that its backend works and return a verifier.

    Raises:
        ValueError: If the scheme name is unknown.
        RuntimeError: If the scheme backend fails its self-test.
    """
    try:
        scheme_cls = _SCHEMES[scheme]
    except KeyError as err:
        raise ValueError(f"Unsupported signature scheme: {scheme}") from err
    instance = scheme_cls()
    instance.self_test()
    logger.info("Signature scheme %s ready", instance.name)
    return SignatureVerifier(instance, ss58_format=ss58_format)
