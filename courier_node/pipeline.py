# courier_node/pipeline.py

import enum
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union

from cryptography.hazmat.primitives.asymmetric import rsa

from courier_node.config import DECRYPT_WORKERS
from courier_node.codec import TransportRecord, decode
from courier_node.envelopes import decrypt_content, open_wrapped_key
from courier_node.errors import CodecError, DecryptError, KeyFormatError, KeyUnwrapError
from courier_node.keys import public_key_from_b64
from courier_node.keystore import resolve_private_key
from courier_node.signature import verify

logger = logging.getLogger(__name__)

DECRYPT_FAILED_PLACEHOLDER = "[Unable to decrypt message]"


class MessageState(str, enum.Enum):
    RECEIVED = "received"
    KEY_SELECTED = "key_selected"
    KEY_UNWRAPPED = "key_unwrapped"
    CONTENT_DECRYPTED = "content_decrypted"
    SIGNATURE_CHECKED = "signature_checked"
    VERIFIED = "verified"
    TAMPERED = "tampered"
    KEY_UNWRAP_FAILED = "key_unwrap_failed"
    DECRYPT_FAILED = "decrypt_failed"


TERMINAL_FAILURES = {MessageState.KEY_UNWRAP_FAILED, MessageState.DECRYPT_FAILED}


@dataclass(frozen=True)
class DecryptedMessage:
    """
    Display-ready result for one record.

    VERIFIED and TAMPERED both carry plaintext; TAMPERED must be shown with
    an unverified annotation. The failure states carry the placeholder text
    and the error kind. trail lists every state the record passed through,
    ending with state.
    """
    state: MessageState
    text: str
    sender_id: Optional[str] = None
    recipient_id: Optional[str] = None
    sent_at: Optional[int] = None
    error: Optional[str] = None
    signature_checked: bool = False
    trail: Tuple[MessageState, ...] = ()

    @property
    def failed(self) -> bool:
        return self.state in TERMINAL_FAILURES

    @property
    def tampered(self) -> bool:
        return self.state == MessageState.TAMPERED

    @property
    def verified(self) -> bool:
        return self.state == MessageState.VERIFIED


RecordLike = Union[TransportRecord, dict]


def _as_record(record: RecordLike) -> TransportRecord:
    if isinstance(record, TransportRecord):
        return record
    return TransportRecord.from_dict(record)


def _failure(state, error, trail, sender_id=None, recipient_id=None, sent_at=None) -> DecryptedMessage:
    return DecryptedMessage(
        state=state,
        text=DECRYPT_FAILED_PLACEHOLDER,
        sender_id=sender_id,
        recipient_id=recipient_id,
        sent_at=sent_at,
        error=error,
        trail=(*trail, state),
    )


def _process(
    record: RecordLike,
    viewer_id: str,
    private_key: rsa.RSAPrivateKey,
    sender_keys: Dict[str, Optional[rsa.RSAPublicKey]],
) -> DecryptedMessage:
    trail = [MessageState.RECEIVED]
    try:
        envelope, signature, sender_id, recipient_id, sent_at = decode(_as_record(record))
    except CodecError as e:
        logger.warning(f"Dropping malformed record to decrypt-failed: {e}")
        return _failure(MessageState.DECRYPT_FAILED, "CodecError", trail)

    meta = dict(sender_id=sender_id, recipient_id=recipient_id, sent_at=sent_at)

    if viewer_id == recipient_id:
        is_recipient = True
    elif viewer_id == sender_id:
        is_recipient = False
    else:
        logger.warning(f"Viewer {viewer_id} is not a party to message sent at {sent_at}")
        return _failure(MessageState.KEY_UNWRAP_FAILED, "NotAParty", trail, **meta)

    blob = envelope.wrapped_keys[recipient_id if is_recipient else sender_id]
    trail.append(MessageState.KEY_SELECTED)

    try:
        content_key = open_wrapped_key(blob, private_key)
    except KeyUnwrapError as e:
        logger.error(f"Key unwrap failed for message sent at {sent_at}: {e}")
        return _failure(MessageState.KEY_UNWRAP_FAILED, "KeyUnwrapError", trail, **meta)
    trail.append(MessageState.KEY_UNWRAPPED)

    try:
        plaintext = decrypt_content(envelope, content_key)
    except DecryptError as e:
        logger.error(f"Content decrypt failed for message sent at {sent_at}: {e}")
        return _failure(MessageState.DECRYPT_FAILED, "DecryptError", trail, **meta)
    trail.append(MessageState.CONTENT_DECRYPTED)

    # Self-authored: the sender trusts what it wrote.
    if not is_recipient:
        trail.append(MessageState.VERIFIED)
        return DecryptedMessage(state=MessageState.VERIFIED, text=plaintext, trail=tuple(trail), **meta)

    sender_pk = sender_keys.get(sender_id)
    ok = sender_pk is not None and verify(plaintext, signature, sender_pk)
    trail.append(MessageState.SIGNATURE_CHECKED)
    if not ok:
        logger.warning(f"Signature check failed for message from {sender_id} at {sent_at}")
        trail.append(MessageState.TAMPERED)
        return DecryptedMessage(
            state=MessageState.TAMPERED,
            text=plaintext,
            error="SignatureVerificationFailure",
            signature_checked=True,
            trail=tuple(trail),
            **meta,
        )

    trail.append(MessageState.VERIFIED)
    return DecryptedMessage(
        state=MessageState.VERIFIED,
        text=plaintext,
        signature_checked=True,
        trail=tuple(trail),
        **meta,
    )


def _resolve_sender_keys(records: List[RecordLike], viewer_id: str, directory) -> Dict[str, Optional[rsa.RSAPublicKey]]:
    """
    Fetch each distinct sender key needed for verification, once per batch.
    DirectoryLookupError propagates: a missing key fails the whole read.
    A key that is present but unparsable is kept as None and its messages
    come out TAMPERED.
    """
    keys: Dict[str, Optional[rsa.RSAPublicKey]] = {}
    for record in records:
        if isinstance(record, TransportRecord):
            sender_id, recipient_id = record.sender_id, record.recipient_id
        elif isinstance(record, dict):
            sender_id = record.get("senderId", record.get("sender_id"))
            recipient_id = record.get("recipientId", record.get("recipient_id"))
        else:
            continue

        if recipient_id != viewer_id or not isinstance(sender_id, str) or sender_id in keys:
            continue

        try:
            keys[sender_id] = public_key_from_b64(directory.get_public_key(sender_id))
        except KeyFormatError as e:
            logger.error(f"Directory key for {sender_id} is unusable: {e}")
            keys[sender_id] = None
    return keys


def decrypt_record(record: RecordLike, viewer_id: str, private_key, directory) -> DecryptedMessage:
    """
    Run one record through the pipeline.

    private_key: SecretKeyHandle or RSA private key of the viewer; used for
    this call only.
    """
    sk = resolve_private_key(private_key)
    sender_keys = _resolve_sender_keys([record], viewer_id, directory)
    return _process(record, viewer_id, sk, sender_keys)


def decrypt_batch(
    records: Iterable[RecordLike],
    viewer_id: str,
    private_key,
    directory,
    max_workers: Optional[int] = None,
) -> List[DecryptedMessage]:
    """
    Decrypt a delivered batch. Output order equals input order.
    Each record is independent; one bad record never blocks the rest.
    """
    records = list(records)
    if not records:
        return []

    sk = resolve_private_key(private_key)
    sender_keys = _resolve_sender_keys(records, viewer_id, directory)

    workers = DECRYPT_WORKERS if max_workers is None else max_workers
    if workers <= 1 or len(records) == 1:
        return [_process(r, viewer_id, sk, sender_keys) for r in records]

    with ThreadPoolExecutor(max_workers=min(workers, len(records))) as pool:
        return list(pool.map(lambda r: _process(r, viewer_id, sk, sender_keys), records))
