"""Exception types raised while decoding, encoding and searching."""


class CompressionError(RuntimeError):
    """Base class for all compression failures."""


class DecodeError(CompressionError):
    """Input bytes could not be decoded into an image."""


class EncodeError(CompressionError):
    """The encode backend is unavailable or rejected the parameters."""


class SearchCancelled(CompressionError):
    """The caller set the stop flag while a search was running."""
