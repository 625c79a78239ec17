"""Exception hierarchy for ugcall.

Locus-level outcomes (no coverage, non-regular reference base, coverage
abort) are never raised; they surface as ``None`` or a non-emitting call.
"""

__all__ = [
    "ConfigurationError",
    "InternalConsistencyError",
    "ReferenceFileError",
    "UgcallError",
]


class UgcallError(Exception):
    """Base class for all ugcall errors."""


class ConfigurationError(UgcallError):
    """Invalid model combination or priors detected at construction time."""


class ReferenceFileError(UgcallError):
    """The reference FASTA is missing, unreadable or lacks a contig."""


class InternalConsistencyError(UgcallError):
    """An upstream component broke a contract the engine relies on."""
