# courier_node/codec.py

import binascii
from base64 import b64decode, b64encode
from typing import Tuple

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from courier_node.envelopes import Envelope
from courier_node.errors import CodecError

ENVELOPE_VERSION = 1
ENVELOPE_SCHEME = "rsa2048-oaep-sha256+aes256gcm/pss-sha256"


class TransportRecord(BaseModel):
    """
    Flat wire shape handed to the relay.
    Every binary field is standard base64; sent_at is epoch milliseconds.
    On the wire the keys are camelCase (senderWrappedKey, sentAt, ...);
    the snake_case field names are accepted on input too.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: int = ENVELOPE_VERSION
    scheme: str = ENVELOPE_SCHEME
    ciphertext: str
    nonce: str
    sender_wrapped_key: str
    recipient_wrapped_key: str
    signature: str
    sender_id: str
    recipient_id: str
    sent_at: int

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)

    @classmethod
    def from_dict(cls, obj: dict) -> "TransportRecord":
        if not isinstance(obj, dict):
            raise CodecError(f"transport record must be an object, got {type(obj).__name__}")
        try:
            return cls.model_validate(obj)
        except ValidationError as e:
            raise CodecError(f"malformed transport record: {e.error_count()} invalid field(s)") from e


def _b64(b: bytes) -> str:
    return b64encode(b).decode("ascii")


def _b64d(field: str, s: str) -> bytes:
    try:
        return b64decode(s.encode("ascii"), validate=True)
    except (binascii.Error, ValueError, UnicodeEncodeError) as e:
        raise CodecError(f"field {field!r} is not valid base64") from e


def encode(
    envelope: Envelope,
    signature: bytes,
    sender_id: str,
    recipient_id: str,
    sent_at: int,
) -> TransportRecord:
    try:
        sender_blob = envelope.wrapped_keys[sender_id]
        recipient_blob = envelope.wrapped_keys[recipient_id]
    except KeyError as e:
        raise CodecError(f"envelope has no wrapped key for {e.args[0]!r}") from None

    return TransportRecord(
        ciphertext=_b64(envelope.ciphertext),
        nonce=_b64(envelope.nonce),
        sender_wrapped_key=_b64(sender_blob),
        recipient_wrapped_key=_b64(recipient_blob),
        signature=_b64(signature),
        sender_id=sender_id,
        recipient_id=recipient_id,
        sent_at=sent_at,
    )


def decode(record: TransportRecord) -> Tuple[Envelope, bytes, str, str, int]:
    """
    Returns (envelope, signature, sender_id, recipient_id, sent_at).

    Only the single versioned scheme is accepted; anything else is a CodecError.
    """
    if record.version != ENVELOPE_VERSION:
        raise CodecError(f"unsupported envelope version: {record.version}")
    if record.scheme != ENVELOPE_SCHEME:
        raise CodecError(f"unsupported envelope scheme: {record.scheme!r}")
    if not record.sender_id or not record.recipient_id:
        raise CodecError("record is missing sender_id or recipient_id")
    if record.sender_id == record.recipient_id:
        raise CodecError("sender_id and recipient_id must differ")

    envelope = Envelope(
        ciphertext=_b64d("ciphertext", record.ciphertext),
        nonce=_b64d("nonce", record.nonce),
        wrapped_keys={
            record.sender_id: _b64d("sender_wrapped_key", record.sender_wrapped_key),
            record.recipient_id: _b64d("recipient_wrapped_key", record.recipient_wrapped_key),
        },
    )
    signature = _b64d("signature", record.signature)
    return envelope, signature, record.sender_id, record.recipient_id, record.sent_at
