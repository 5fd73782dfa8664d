class ReconcilerError(Exception):
    """Base class for every error raised by the reconciler."""


class StoreError(ReconcilerError):
    def __init__(self, kind: str, namespace: str, name: str, reason: str = ""):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.reason = reason
        message = f"{kind} {namespace}/{name}"
        super().__init__(f"{message}: {reason}" if reason else message)


class NotFoundError(StoreError):
    """The object does not exist. Expected; drives branching."""


class ConflictError(StoreError):
    """The stored resourceVersion changed since the object was read."""


class ConflictRetryExhaustedError(ConflictError):
    """Every attempt of a retry-on-conflict loop was rejected."""


class AlreadyExistsError(StoreError):
    pass


class StoreUnavailableError(StoreError):
    """Any other store I/O failure."""


class DecodeError(ReconcilerError):
    """The spec snapshot annotation is missing or cannot be decoded."""


class CorruptStateError(ReconcilerError):
    """
    Derived objects exist but the snapshot cannot be decoded, so there is no
    baseline to compare against. Needs an operator to repair the annotation.
    """
