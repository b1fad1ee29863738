# Copyright 2023 - Compute Heavy Industries Incorporated
# This work is released, distributed, and licensed under AGPLv3.

import json
import typing
import struct
import logging
import jsonschema

from defercommit.core import exceptions
from defercommit.core import stream

logger = logging.getLogger(__name__)

def integer(data: dict, key: str) -> int:
    """Fetch an integer field. JSON Schema also calls ``1.0`` an integer."""
    value = data[key]
    if not isinstance(value, int):
        raise exceptions.ValidationError(f"{key} must be an integer")

    return value

### Edits ###
class Edit:
    """Parent class for all edit types."""
    def signature_bytes(self) -> bytes:
        """Return a byte-based representation for signing or hashing."""
        return self.__class__.__name__.encode()

    def serialize(self) -> dict:
        """Serialize instance to dictionary."""
        return {
            "type": self.__class__.__name__,
        }

    def apply(self, deferred: stream.DeferredCommitStream):
        """Apply the edit to a stream without committing."""
        raise NotImplementedError("unimplemented method")

    def __eq__(self, other):
        if not isinstance(other, self.__class__):
            return False

        return self.serialize() == other.serialize()

    def __ne__(self, other):
        return not self.__eq__(other)

class WriteEdit(Edit):
    """Write ``data`` at ``offset``. Writing past the end grows the stream,
    any gap reads as zeros."""
    def __init__(self, offset: int, data: bytes):
        self.offset: int = offset
        """Stream offset of the first byte."""
        self.data: bytes = data
        """Bytes to write."""

    def signature_bytes(self) -> bytes:
        return b"".join([
            super().signature_bytes(),
            struct.pack("<QQ", self.offset, len(self.data)),
            self.data,
        ])

    def serialize(self) -> dict:
        data = super().serialize()
        data["offset"] = self.offset
        data["data"] = self.data.hex()
        return data

    @classmethod
    def deserialize(cls, data: dict) -> typing.Self:
        """Deserialize dictionary to instance."""
        jsonschema.validate(instance=data, schema=cls.schema())
        return cls(integer(data, "offset"), bytes.fromhex(data["data"]))

    @staticmethod
    def schema(relative="") -> dict:
        """Returns the JSON Schema for validating the serialized class.

        Args:
            relative: A base path for nested references.
        """
        return {
            "type": "object",
            "properties": {
                "type": {
                    "const": "WriteEdit",
                },
                "offset": {
                    "type": "integer",
                    "minimum": 0,
                },
                "data": {
                    "type": "string",
                    "pattern": "^([0-9a-fA-F]{2})*$",
                },
            },
            "required": [
                "type",
                "offset",
                "data",
            ],
            "additionalProperties": False,
        }

    def apply(self, deferred: stream.DeferredCommitStream):
        if self.offset > deferred.length:
            deferred.set_length(self.offset)

        deferred.seek(self.offset)
        deferred.write(self.data)

    def __repr__(self):
        return f"WriteEdit({self.offset}, {len(self.data)} bytes)"

class ResizeEdit(Edit):
    """Grow the stream to ``length`` bytes."""
    def __init__(self, length: int):
        self.length: int = length
        """New stream length."""

    def signature_bytes(self) -> bytes:
        return b"".join([
            super().signature_bytes(),
            struct.pack("<Q", self.length),
        ])

    def serialize(self) -> dict:
        data = super().serialize()
        data["length"] = self.length
        return data

    @classmethod
    def deserialize(cls, data: dict) -> typing.Self:
        """Deserialize dictionary to instance."""
        jsonschema.validate(instance=data, schema=cls.schema())
        return cls(integer(data, "length"))

    @staticmethod
    def schema(relative="") -> dict:
        """Returns the JSON Schema for validating the serialized class.

        Args:
            relative: A base path for nested references.
        """
        return {
            "type": "object",
            "properties": {
                "type": {
                    "const": "ResizeEdit",
                },
                "length": {
                    "type": "integer",
                    "minimum": 0,
                },
            },
            "required": [
                "type",
                "length",
            ],
            "additionalProperties": False,
        }

    def apply(self, deferred: stream.DeferredCommitStream):
        deferred.set_length(self.length)

    def __repr__(self):
        return f"ResizeEdit({self.length})"

EDIT_TYPES: dict[str, typing.Type[Edit]] = {
    "WriteEdit": WriteEdit,
    "ResizeEdit": ResizeEdit,
}

### Script ###
class Script:
    """Ordered list of edits applied to a stream as a single commit."""
    def __init__(self, edits: list[Edit],
        author: typing.Optional[str] = None,
        signature: typing.Optional[bytes] = None):
        self.edits: list[Edit] = edits
        """Edits in application order."""
        self.author: typing.Optional[str] = author
        """Hex encoded verify key of the signer."""
        self.signature: typing.Optional[bytes] = signature
        """Signature over :meth:`signature_bytes`."""

    def signature_bytes(self) -> bytes:
        """Return a byte-based representation for signing or hashing."""
        return b"".join([
            struct.pack("<Q", len(self.edits)),
            *[ea.signature_bytes() for ea in self.edits],
        ])

    def serialize(self) -> dict:
        """Serialize instance to dictionary."""
        signature = None
        if self.signature is not None:
            signature = self.signature.hex()

        return {
            "edits": [ea.serialize() for ea in self.edits],
            "author": self.author,
            "signature": signature,
        }

    @classmethod
    def deserialize(cls, data: dict) -> typing.Self:
        """Deserialize dictionary to instance.

        Raises:
            ValidationError: Malformed script."""
        try:
            jsonschema.validate(instance=data, schema=cls.schema())
        except jsonschema.exceptions.ValidationError as error:
            raise exceptions.ValidationError(
                f"invalid edit script: {error.message}") from error

        edits = [EDIT_TYPES[ea["type"]].deserialize(ea)
            for ea in data["edits"]]

        signature = data.get("signature")
        if signature is not None:
            signature = bytes.fromhex(signature)

        return cls(edits, data.get("author"), signature)

    @classmethod
    def loads(cls, text: str | bytes) -> typing.Self:
        """Deserialize a JSON document.

        Raises:
            ValidationError: Not JSON or malformed script."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as error:
            raise exceptions.ValidationError(
                "edit script is not valid JSON") from error

        return cls.deserialize(data)

    def dumps(self) -> str:
        """Serialize instance to a JSON document."""
        return json.dumps(self.serialize(), indent=2)

    @staticmethod
    def schema(relative="") -> dict:
        """Returns the JSON Schema for validating the serialized class.

        Args:
            relative: A base path for nested references.
        """
        return {
            "type": "object",
            "properties": {
                "edits": {
                    "type": "array",
                    "items": {
                        "oneOf": [
                            WriteEdit.schema(f"{relative}/edits"),
                            ResizeEdit.schema(f"{relative}/edits"),
                        ],
                    },
                },
                "author": {
                    "type": ["string", "null"],
                    "pattern": "^[0-9a-fA-F]{64}$",
                },
                "signature": {
                    "type": ["string", "null"],
                    "pattern": "^[0-9a-fA-F]{128}$",
                },
            },
            "required": [
                "edits",
            ],
        }

    def apply(self, deferred: stream.DeferredCommitStream):
        """Apply every edit in order. Nothing is committed, on error the
        caller discards the stream and the sink stays untouched."""
        for edit in self.edits:
            logger.debug("applying %r", edit)
            edit.apply(deferred)

    def __eq__(self, other):
        if not isinstance(other, self.__class__):
            return False

        return self.edits == other.edits and \
            self.author == other.author and \
            self.signature == other.signature

    def __ne__(self, other):
        return not self.__eq__(other)
