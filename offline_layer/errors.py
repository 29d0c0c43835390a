"""Error taxonomy shared by the cache, queue and connectivity layers."""


class OfflineLayerError(Exception):
    """Base class for all offline-layer errors."""


class TransportError(OfflineLayerError):
    """The network could not be reached or the request timed out."""


class ProbeTimeoutError(TransportError):
    """The connectivity probe did not complete before its deadline."""


class StorageError(OfflineLayerError):
    """The persistent store rejected a read or write."""


class QuotaExceededError(StorageError):
    """A write would push a namespace past its storage quota."""


class ValidationError(OfflineLayerError):
    """A request descriptor is malformed and cannot be queued."""
