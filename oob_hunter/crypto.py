"""Key handling for the interactsh wire format.

The client registers an RSA public key with the collaborator server.  Each
poll response carries an AES key wrapped with that public key (RSA-OAEP,
SHA-256) and a list of items, each ``IV || AES-256-CFB(ciphertext)``, all
base64 encoded.

:class:`CryptoProvider` is the only surface the client depends on, so tests
and embedders can inject their own implementation.
"""

from __future__ import annotations

import base64
import binascii
from typing import Protocol, runtime_checkable

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import DecodeError

AES_IV_SIZE = 16


@runtime_checkable
class CryptoProvider(Protocol):
    def encode_public_key(self) -> str: ...

    def decrypt_message(self, shared_key: str, item: str) -> bytes: ...

    def get_private_key(self) -> object | None: ...


class RSACryptoProvider:
    """RSA-2048 key pair generated on first use."""

    def __init__(self, key_size: int = 2048):
        self.key_size = key_size
        self._private_key: rsa.RSAPrivateKey | None = None

    def _key(self) -> rsa.RSAPrivateKey:
        if self._private_key is None:
            self._private_key = rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)
        return self._private_key

    def get_private_key(self) -> rsa.RSAPrivateKey | None:
        return self._private_key

    def encode_public_key(self) -> str:
        pem = self._key().public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return base64.b64encode(pem).decode("ascii")

    def decrypt_message(self, shared_key: str, item: str) -> bytes:
        try:
            wrapped = base64.b64decode(shared_key, validate=True)
            aes_key = self._key().decrypt(
                wrapped,
                padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None),
            )
            blob = base64.b64decode(item, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise DecodeError(f"could not unwrap interaction key: {e}") from e
        if len(blob) <= AES_IV_SIZE:
            raise DecodeError("interaction item shorter than IV")
        iv, ciphertext = blob[:AES_IV_SIZE], blob[AES_IV_SIZE:]
        try:
            decryptor = Cipher(algorithms.AES(aes_key), modes.CFB(iv)).decryptor()
        except ValueError as e:
            raise DecodeError(f"invalid AES key: {e}") from e
        return decryptor.update(ciphertext) + decryptor.finalize()


def encrypt_for(public_key_b64: str, aes_key: bytes, plaintext: bytes, iv: bytes) -> tuple[str, str]:
    """Server side of the exchange: wrap ``aes_key`` and encrypt ``plaintext``.

    Returns ``(shared_key, item)`` as they appear in a poll envelope.  Used by
    the test-suite and handy for local collaborator stubs.
    """
    public_key = serialization.load_pem_public_key(base64.b64decode(public_key_b64))
    wrapped = public_key.encrypt(  # type: ignore[union-attr]
        aes_key,
        padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None),
    )
    encryptor = Cipher(algorithms.AES(aes_key), modes.CFB(iv)).encryptor()
    blob = iv + encryptor.update(plaintext) + encryptor.finalize()
    return base64.b64encode(wrapped).decode("ascii"), base64.b64encode(blob).decode("ascii")
