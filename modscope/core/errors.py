"""Exception types raised by modscope queries."""


class ConfigurationError(ValueError):
    """Invalid option value or combination, detected before any read is processed."""


class NotFoundError(FileNotFoundError):
    """BAM file/URL cannot be opened, or a region names a contig missing from the header."""


class DataError(ValueError):
    """Malformed modification tag data encountered while decoding a read."""
