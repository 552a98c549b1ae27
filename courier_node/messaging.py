# courier_node/messaging.py

import logging
import threading
import time
from typing import Callable, List, Optional

from courier_node import codec, envelopes, keys, signature
from courier_node.channel import Channel, Subscription
from courier_node.codec import TransportRecord
from courier_node.errors import DirectoryLookupError, IdentityConflictError, LocalKeyMissingError
from courier_node.keystore import LocalKeyStore, SecretKeyHandle, resolve_private_key
from courier_node.pipeline import DecryptedMessage, decrypt_batch
from courier_node.store import MessageStore, conversation_id_for

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


# -----------------------------------------------------------
# Identity lifecycle
# -----------------------------------------------------------

def register_identity(identity: str, directory, key_store: LocalKeyStore) -> str:
    """
    Issue a key pair, keep the private half local, publish the public half.
    Returns the published public key text.

    The private key is stored first so a published key always has a local
    counterpart. If publishing fails the key store is rolled back and the
    error propagates (GenerationError, IdentityConflictError, OSError).
    """
    pair = keys.generate()
    pk_b64 = pair.public_key_b64

    previous = key_store.backup()
    key_store.set(pair.private_key)
    try:
        directory.put_public_key(identity, pk_b64)
    except Exception:
        key_store.restore(previous)
        raise

    logger.info(f"Identity registered: {identity}")
    return pk_b64


def open_session(key_store: LocalKeyStore) -> SecretKeyHandle:
    """
    Load the viewer's private key for this session.
    A missing key is an error: keys are never silently regenerated.
    """
    handle = key_store.get()
    if handle is None:
        raise LocalKeyMissingError(
            "no local private key; restore it or run an explicit key reset"
        )
    return handle


def reset_identity_keys(identity: str, directory, key_store: LocalKeyStore, confirm: bool = False) -> str:
    """
    Explicit, user-visible key reset. Messages wrapped for the old key pair
    become permanently unreadable by this identity.

    The new private key replaces the old one atomically before the directory
    is rebound; if the rebind fails the old key is put back.
    """
    if not confirm:
        raise IdentityConflictError(identity)

    pair = keys.generate()
    pk_b64 = pair.public_key_b64

    previous = key_store.backup()
    key_store.set(pair.private_key)
    try:
        directory.reset_public_key(identity, pk_b64, confirm=True)
    except Exception:
        key_store.restore(previous)
        raise

    logger.warning(f"Key pair for {identity} was reset on explicit request")
    return pk_b64


# -----------------------------------------------------------
# Send
# -----------------------------------------------------------

def compose_message(
    plaintext: str,
    sender_id: str,
    recipient_id: str,
    private_key,
    directory,
    sent_at: Optional[int] = None,
) -> TransportRecord:
    """
    plaintext -> envelope for {sender, recipient} -> signature -> record.

    DirectoryLookupError: sender or recipient has no published key.
    LocalKeyMissingError: the sender's private key handle is empty/released.
    """
    if not isinstance(plaintext, str) or not plaintext.strip():
        raise ValueError("message text must be a non-empty string")
    if sender_id == recipient_id:
        raise ValueError("sender and recipient must differ")

    sk = resolve_private_key(private_key)

    recipient_pk = directory.load_public_key(recipient_id)
    sender_pk = directory.load_public_key(sender_id)

    envelope = envelopes.wrap_for_recipients(
        plaintext,
        [(sender_id, sender_pk), (recipient_id, recipient_pk)],
    )
    sig = signature.sign(plaintext, sk)

    return codec.encode(
        envelope,
        sig,
        sender_id,
        recipient_id,
        _now_ms() if sent_at is None else sent_at,
    )


def send_message(
    store: MessageStore,
    plaintext: str,
    sender_id: str,
    recipient_id: str,
    private_key,
    directory,
    sent_at: Optional[int] = None,
) -> int:
    record = compose_message(plaintext, sender_id, recipient_id, private_key, directory, sent_at=sent_at)
    return store.append_record(record)


# -----------------------------------------------------------
# Read
# -----------------------------------------------------------

def read_conversation(
    store: MessageStore,
    conversation_id: str,
    viewer_id: str,
    private_key,
    directory,
    max_workers: Optional[int] = None,
) -> List[DecryptedMessage]:
    records = store.list_records(conversation_id)
    return decrypt_batch(records, viewer_id, private_key, directory, max_workers=max_workers)


class ConversationView:
    """
    Live view of one conversation for one viewer.

    Every batch pushed by the Channel is decrypted and replaces .messages.
    After close(), batches still in flight are discarded instead of rendered.
    """

    def __init__(
        self,
        channel: Channel,
        viewer_id: str,
        peer_id: str,
        handle: SecretKeyHandle,
        directory,
        on_update: Optional[Callable[[List[DecryptedMessage]], None]] = None,
    ):
        self.viewer_id = viewer_id
        self.conversation_id = conversation_id_for(viewer_id, peer_id)
        self.messages: List[DecryptedMessage] = []
        self.error: Optional[Exception] = None

        self._handle = handle
        self._directory = directory
        self._on_update = on_update
        self._lock = threading.Lock()
        self._sub: Subscription = channel.subscribe(self.conversation_id, self._on_batch)

    @property
    def session(self) -> str:
        return self._sub.session

    @property
    def closed(self) -> bool:
        return not self._sub.active

    def _on_batch(self, batch: List[TransportRecord]):
        try:
            results = decrypt_batch(batch, self.viewer_id, self._handle, self._directory)
        except (DirectoryLookupError, LocalKeyMissingError) as e:
            # fatal to this refresh only
            with self._lock:
                if self.closed:
                    return
                self.error = e
            logger.error(f"Conversation {self.conversation_id} refresh failed: {e}")
            return

        with self._lock:
            if self.closed:
                logger.debug(f"Discarding batch for closed session {self.session}")
                return
            self.messages = results
            self.error = None

        if self._on_update is not None:
            self._on_update(results)

    def close(self):
        self._sub.cancel()
