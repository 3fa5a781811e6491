"""Error taxonomy for the quiz settlement flow."""


class QuizeloError(RuntimeError):
    """Base class; ``str(exc)`` is the user-facing message."""


class PreconditionError(QuizeloError):
    """A local check failed before any network round trip."""


class NotConnectedError(PreconditionError):
    def __init__(self, message: str = "Please connect your wallet first"):
        super().__init__(message)


class WrongNetworkError(PreconditionError):
    def __init__(self, message: str = "Please switch to the correct network first"):
        super().__init__(message)


class CallEncodingError(QuizeloError):
    """Arguments could not be encoded for the named contract function."""


class SignatureDeclinedError(QuizeloError):
    """The signer refused to sign. This is the only user-side cancel."""

    def __init__(self, message: str = "Transaction was rejected in the wallet"):
        super().__init__(message)


class SubmissionError(QuizeloError):
    """The transaction never made it to the network."""


class TransactionFailedError(QuizeloError):
    """The transaction was included but reverted."""

    def __init__(self, tx_hash: str, message: str | None = None):
        self.tx_hash = tx_hash
        super().__init__(message or f"Transaction failed. Hash: {tx_hash}")


class SessionStateError(QuizeloError):
    """Local pre-check found the session cannot be claimed."""


class LedgerReadError(QuizeloError):
    """A view call against the ledger or a token contract failed."""


class OperationCancelled(QuizeloError):
    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


class QuestionFormatError(QuizeloError, ValueError):
    """Generated quiz content is malformed."""


class GenerationError(QuizeloError):
    """The content-generation service failed or returned nothing usable."""
