class OpenBookError(Exception):
    pass


class DecodeError(OpenBookError):
    """Account buffer is malformed, undersized or of the wrong kind."""


class OwnershipMismatch(OpenBookError):
    """Fetched account does not belong to the expected program or address."""

    def __init__(self, address, expected, actual, what="owner"):
        self.address = address
        self.expected = expected
        self.actual = actual
        super().__init__(f"Account {address} {what} is {actual}, expected {expected}")


class RemoteFetchError(OpenBookError):
    """Transient failure talking to the remote node."""


class SubmissionFailure(OpenBookError):
    """The remote node rejected a transaction outright."""

    def __init__(self, message, signature=None, error=None):
        self.signature = signature
        self.error = error
        super().__init__(message)


class ConfirmationTimeout(OpenBookError):
    def __init__(self, signature):
        self.signature = signature
        super().__init__(f"Confirmation of {signature} could not be verified")


class InvalidPrice(OpenBookError):
    pass


class InvalidSize(OpenBookError):
    """Order quantity does not fit the program's integer fields."""


class MissingAccount(OpenBookError):
    pass


class UnsupportedOperation(OpenBookError):
    pass
