"""Exception hierarchy shared by the Flux modules."""


class FluxError(Exception):
    """Base class for all Flux errors."""


class ConfigError(FluxError):
    """Invalid or unreadable run configuration. Fatal before any traffic."""


class RequestError(FluxError):
    """A single request could not be completed. Recorded, never fatal."""


class TransportError(RequestError):
    """Connection failure, timeout or other transport-level problem."""


class MultipartError(RequestError):
    """A multipart part could not be built (missing file, unknown type)."""
