"""Exception hierarchy for warden."""


class WardenError(Exception):
    """Base class for all warden errors."""


class ConfigError(WardenError):
    """Configuration could not be loaded or is invalid."""


class ImageReferenceError(WardenError, ValueError):
    """An image string could not be parsed."""

    def __init__(self, image: str, reason: str):
        super().__init__(f"invalid image reference '{image}': {reason}")
        self.image = image
        self.reason = reason


class TrustServiceError(WardenError):
    """Base class for failures talking to the trust service."""


class UnsignedRepository(TrustServiceError):
    """The trust service answered that the repository has no signed data."""


class TrustServiceTimeout(TrustServiceError):
    """The round trip to the trust service exceeded the configured deadline."""


class TrustServiceCancelled(TrustServiceError):
    """The caller cancelled the request before it completed."""


class TrustServiceUnavailable(TrustServiceError):
    """Transport failure or unexpected status from the trust service."""


class MalformedTrustData(TrustServiceError):
    """The trust service returned a response that could not be interpreted."""


class ClusterAPIError(WardenError):
    """A call to the cluster API failed."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class ReconcileError(WardenError):
    """A reconcile pass failed and should be retried."""
