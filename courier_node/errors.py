# courier_node/errors.py


class CourierError(Exception):
    """Base class for every error raised by courier_node."""
    pass


class GenerationError(CourierError):
    """Key pair issuance failed (randomness source or backend unavailable)."""
    pass


class KeyFormatError(CourierError):
    """A serialized key could not be parsed."""
    pass


class DirectoryLookupError(CourierError):
    """No public key is bound to the requested identity."""

    def __init__(self, identity: str):
        super().__init__(f"no public key bound to identity {identity!r}")
        self.identity = identity


class IdentityConflictError(CourierError):
    """An identity is already bound to a different public key."""

    def __init__(self, identity: str):
        super().__init__(f"identity {identity!r} is already bound to another public key")
        self.identity = identity


class LocalKeyMissingError(CourierError):
    """The viewer's private key is absent, unreadable or already released."""
    pass


class KeyUnwrapError(CourierError):
    """The wrapped content key could not be opened with the reader's private key."""
    pass


class DecryptError(CourierError):
    """The content key was recovered but the ciphertext failed to authenticate."""
    pass


class CodecError(CourierError):
    """A transport record is malformed or uses an unknown scheme."""
    pass
