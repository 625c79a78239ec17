"""
I/O module for ugcall.

Provides readers for reference, alignment and known-site files and the VCF writer.
"""

from .input import BamLocusSource, FastaReference, VcfKnownSites
from .output import VcfWriter

__all__ = [
    "BamLocusSource",
    "FastaReference",
    "VcfKnownSites",
    "VcfWriter",
]
