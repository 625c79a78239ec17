"""
Coordinate Kernel: The source of truth for genomic coordinate systems.

Handles conversion between:
- Region strings and VCF POS (1-based, inclusive)
- Internal (0-based, half-open [start, end))

Loci handed to the engine are always 0-based; the kernel is the only place
that adds or subtracts one.
"""

import re

from ..models.core import GenomicInterval

_REGION_RE = re.compile(r"^(?P<chrom>[^:]+?)(?::(?P<start>[\d,]+)(?:-(?P<end>[\d,]+))?)?$")


class CoordinateKernel:
    """
    Stateless utility for coordinate transformations and normalization.
    """

    @staticmethod
    def parse_region(region: str, contig_lengths: dict[str, int]) -> GenomicInterval:
        """
        Convert a region string to an internal interval.

        Accepts ``chrom``, ``chrom:pos`` and ``chrom:start-end`` with 1-based
        inclusive coordinates (commas allowed). The interval is clipped to
        the contig.

        Args:
            region: Region string, e.g. ``chr1:101-200``
            contig_lengths: Known contigs and their lengths

        Returns:
            0-based half-open GenomicInterval (``chr1:101-200`` -> [100, 200))

        Raises:
            ValueError: on malformed regions or unknown contigs
        """
        match = _REGION_RE.match(region.strip())
        if not match:
            raise ValueError(f"Malformed region: {region!r}")

        chrom = CoordinateKernel.resolve_contig(match.group("chrom"), contig_lengths)
        if chrom is None:
            raise ValueError(f"Contig not found in reference: {match.group('chrom')}")
        length = contig_lengths[chrom]

        if match.group("start") is None:
            return GenomicInterval(chrom=chrom, start=0, end=length)

        start_1based = int(match.group("start").replace(",", ""))
        end_group = match.group("end")
        end_1based = int(end_group.replace(",", "")) if end_group else start_1based
        if start_1based < 1 or end_1based < start_1based:
            raise ValueError(f"Invalid coordinates in region: {region!r}")

        # 1-based inclusive [s, e] -> 0-based half-open [s-1, e)
        return GenomicInterval(
            chrom=chrom,
            start=min(start_1based - 1, length),
            end=min(end_1based, length),
        )

    @staticmethod
    def chunk_interval(interval: GenomicInterval, chunk_size: int) -> list[GenomicInterval]:
        """Split an interval into consecutive pieces of at most ``chunk_size`` bases."""
        return [
            GenomicInterval(chrom=interval.chrom, start=start, end=min(start + chunk_size, interval.end))
            for start in range(interval.start, interval.end, chunk_size)
        ]

    @staticmethod
    def internal_to_vcf_pos(pos: int) -> int:
        """0-based locus -> 1-based VCF POS."""
        return pos + 1

    @staticmethod
    def vcf_to_internal_pos(pos: int) -> int:
        """1-based VCF POS -> 0-based locus."""
        return pos - 1

    @staticmethod
    def resolve_contig(chrom: str, known: dict[str, int] | set[str]) -> str | None:
        """
        Find ``chrom`` among known contig names, tolerating a missing or extra 'chr' prefix.
        """
        if chrom in known:
            return chrom
        norm = CoordinateKernel.normalize_chromosome(chrom)
        for candidate in (norm, f"chr{norm}"):
            if candidate in known:
                return candidate
        return None

    @staticmethod
    def normalize_chromosome(chrom: str) -> str:
        """
        Normalize chromosome name (remove 'chr' prefix).
        """
        if chrom.lower().startswith("chr"):
            return chrom[3:]
        return chrom
