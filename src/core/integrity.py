# Copyright 2023 - Compute Heavy Industries Incorporated
# This work is released, distributed, and licensed under AGPLv3.

import io
import nacl
import typing
import hashlib

from nacl import signing

from defercommit.core import exceptions
from defercommit.core import edits
from defercommit.core import stream

CHUNK_SIZE = 1024*64
"""Read size used when hashing a stream."""

def digest(deferred: stream.DeferredCommitStream,
    chunk_size: int = CHUNK_SIZE) -> str:
    """Hex encoded SHA256 of the stream's logical content, pending writes
    included. The cursor is restored afterwards."""
    position = deferred.tell()
    hash_ = hashlib.sha256()

    deferred.seek(0, io.SEEK_SET)
    buf = bytearray(chunk_size)
    while True:
        n = deferred.readinto(buf)
        if n == 0:
            break
        hash_.update(memoryview(buf)[:n])

    deferred.seek(position, io.SEEK_SET)
    return hash_.hexdigest()

class Signer:
    """Edit script signer using nacl (ED25519)."""
    def __init__(self, signing_key: nacl.signing.SigningKey):
        self.signing_key: nacl.signing.SigningKey = signing_key
        """Key for signing."""
        self.verify_bytes: bytes = bytes(self.signing_key.verify_key)
        """Public key bytes for identity purposes."""

    def sign(self, script: edits.Script) -> edits.Script:
        """Sign script with ``signing_key``."""
        signed = self.signing_key.sign(script.signature_bytes())
        script.signature = signed.signature
        script.author = self.verify_bytes.hex()
        return script

def verify(script: edits.Script,
    trusted: typing.Optional[typing.Collection[str]] = None):
    """Validate that the script is signed with the key in ``author``.

    Args:
        trusted: Hex encoded verify keys allowed to author scripts. Any
            author is accepted when None.

    Raises:
        ValidationError: Unsigned, tampered or untrusted script."""
    if script.author is None or script.signature is None:
        raise exceptions.ValidationError("edit script is not signed")

    if trusted is not None:
        if script.author.lower() not in {ea.lower() for ea in trusted}:
            raise exceptions.ValidationError("edit script author not trusted")

    verify_key = nacl.signing.VerifyKey(bytes.fromhex(script.author))
    try:
        verify_key.verify(script.signature_bytes(), script.signature)
    except nacl.exceptions.BadSignatureError as error:
        raise exceptions.ValidationError(
            "edit script signature failed to validate") from error

class KeyPair:
    """Convenience class for serializing nacl key pairs."""
    def __init__(self, signing_key: bytes|None=None):
        if signing_key is not None:
            self.signing_key = nacl.signing.SigningKey(signing_key)
        else:
            self.signing_key = nacl.signing.SigningKey.generate()
        self.verify_key = self.signing_key.verify_key

    def serialize(self):
        return {
            "signing_key": bytes(self.signing_key).hex(),
            "verify_key": bytes(self.verify_key).hex(),
        }

    @classmethod
    def deserialize(cls, data: dict):
        return cls(bytes.fromhex(data["signing_key"]))

    def signer(self) -> Signer:
        return Signer(self.signing_key)
