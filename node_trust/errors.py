# node_trust/errors.py
"""
Exception hierarchy for the Node Trust Agent

Startup errors are fatal and bubble up to main().
Store errors are raised by MetadataClient backends.
Validation errors concern single records and are logged and skipped.
"""


class NodeTrustError(Exception):
    """Base class for all agent errors"""


# --- Metadata store ---

class StoreError(NodeTrustError):
    """Generic metadata store failure"""


class StoreUnavailable(StoreError):
    """Transport failure: connection refused, dropped watch, timeout"""


class NotFound(StoreError):
    """Requested record does not exist"""


class Forbidden(StoreError):
    """Store rejected the request for permission reasons"""


class Conflict(StoreError):
    """Store rejected a write because of a concurrent modification"""


class WatchExpired(StoreError):
    """Requested resource version is older than the store's retained history"""


# --- Startup (fatal) ---

class StartupError(NodeTrustError):
    """Startup aborted, no background task was started"""


class ConfigError(StartupError):
    pass


class KeyMaterialError(StartupError):
    """PKI files missing or unreadable"""


class PublishError(StartupError):
    """Local certificate could not be published"""


class SyncError(StartupError):
    """Initial peer certificate sync failed"""


class LoadError(StartupError):
    """Initial exclusion load failed"""


# --- Validation ---

class ExclusionParseError(NodeTrustError):
    """Exclusion record is unparsable as a whole"""


class ExcluderError(NodeTrustError):
    """Excluder could not apply a new exclusion set"""


class ApplyFailed(NodeTrustError):
    """Observed change could not be applied; the watch resyncs and retries it"""
