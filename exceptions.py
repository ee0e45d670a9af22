class SignalingError(Exception):
    """Base class for errors reported back to a client as an ``error`` frame."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class JoinRejected(SignalingError):
    """A join request that cannot be applied; no room state was changed."""
