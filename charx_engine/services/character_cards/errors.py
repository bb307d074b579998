"""Exceptions raised by the card codec, packager and importer."""


class CharXError(Exception):
    """Base exception for character bundle operations."""
    pass


class CodecError(CharXError):
    """Base exception for module container encoding/decoding."""
    pass


class FormatError(CodecError):
    """Container buffer is malformed, truncated or of an unsupported version."""
    pass


class EncodingError(CodecError):
    """Module document could not be serialized or compressed."""
    pass


class PackagingError(CharXError):
    """Bundle could not be assembled, read or written."""
    pass


class CompressionUnavailable(CharXError):
    """Compression primitive used before initialization."""
    pass
