"""
Input Adapters: reference, alignments and known sites.

This module turns FASTA, BAM and VCF files into the engine's inputs:
``ReferenceContext`` windows, ``LocusData`` pileups and ``KnownSite`` lookups.
All file access goes through pysam.
"""

import heapq
import logging
from collections.abc import Iterator
from functools import partial
from itertools import groupby
from pathlib import Path

import pysam

from ..core.kernel import CoordinateKernel
from ..exceptions import ReferenceFileError
from ..models.core import GenomicInterval
from ..models.pileup import AlignedRead, LocusData, PileupElement, ReadBackedPileup, ReferenceContext
from ..models.sites import KnownSite

logger = logging.getLogger(__name__)

# reference bases fetched on each side of a locus
DEFAULT_REFERENCE_WINDOW = 20

# how often (in loci) the read cache drops reads that ended upstream
_CACHE_PURGE_INTERVAL = 1000


class FastaReference:
    """Reads reference windows from an indexed FASTA file."""

    def __init__(self, path: Path, window: int = DEFAULT_REFERENCE_WINDOW):
        self.path = path
        self.window = window
        try:
            self._fasta = pysam.FastaFile(str(path))
        except (OSError, ValueError) as e:
            raise ReferenceFileError(f"Cannot open reference FASTA {path}: {e}") from e
        self.contig_lengths = dict(zip(self._fasta.references, self._fasta.lengths))

    def _contig(self, contig: str) -> str:
        name = CoordinateKernel.resolve_contig(contig, self.contig_lengths)
        if name is None:
            raise ReferenceFileError(f"Contig {contig} not found in reference {self.path}")
        return name

    def fetch(self, contig: str, start: int, end: int) -> str:
        """Uppercase reference bases in [start, end), clipped to the contig."""
        name = self._contig(contig)
        start = max(0, start)
        end = min(end, self.contig_lengths[name])
        if end <= start:
            return ""
        return self._fasta.fetch(name, start, end).upper()

    def reference_context(self, contig: str, position: int) -> ReferenceContext:
        """The base at ``position`` plus ``window`` bases on each side."""
        window_start = max(0, position - self.window)
        bases = self.fetch(contig, window_start, position + self.window + 1)
        return ReferenceContext(
            contig=contig,
            position=position,
            window_start=window_start,
            bases=bases,
            fetch=partial(self.fetch, contig),
        )

    def iter_contexts(self, interval: GenomicInterval) -> Iterator[ReferenceContext]:
        """Reference contexts for every locus of ``interval``, from a single fetch."""
        block_start = max(0, interval.start - self.window)
        block = self.fetch(interval.chrom, block_start, interval.end + self.window)
        fetch = partial(self.fetch, interval.chrom)
        for position in range(interval.start, interval.end):
            window_start = max(block_start, position - self.window)
            lo = window_start - block_start
            hi = position + self.window + 1 - block_start
            yield ReferenceContext(
                contig=interval.chrom,
                position=position,
                window_start=window_start,
                bases=block[lo:hi],
                fetch=fetch,
            )

    def close(self) -> None:
        self._fasta.close()

    def __enter__(self) -> "FastaReference":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def _has_bad_mate(aln: pysam.AlignedSegment) -> bool:
    return aln.is_paired and not aln.mate_is_unmapped and aln.next_reference_id != aln.reference_id


class BamLocusSource:
    """
    Merges pileup columns from one or more BAM files into ``LocusData``.

    Args:
        bam_files: sample name -> BAM path. The read group ``SM`` tag wins
            over this name when present.
        max_depth: Per-file pileup depth cap; capped loci are flagged downsampled.
        include_uncovered: Also yield empty loci for positions without reads.
    """

    def __init__(
        self,
        bam_files: dict[str, Path],
        max_depth: int = 8000,
        include_uncovered: bool = False,
    ):
        self.max_depth = max_depth
        self.include_uncovered = include_uncovered
        self._bams: list[tuple[str, pysam.AlignmentFile, dict[str, str]]] = []
        for sample, path in bam_files.items():
            bam = pysam.AlignmentFile(str(path), "rb")
            read_groups = {
                rg["ID"]: rg["SM"]
                for rg in bam.header.to_dict().get("RG", [])
                if "ID" in rg and "SM" in rg
            }
            self._bams.append((sample, bam, read_groups))

    @property
    def samples(self) -> list[str]:
        """Every sample name that can appear in a pileup."""
        names = set()
        for sample, _bam, read_groups in self._bams:
            names.update(read_groups.values() or [sample])
        return sorted(names)

    def loci(self, interval: GenomicInterval) -> Iterator[LocusData]:
        """Yield loci of ``interval`` in position order."""
        streams = [
            self._columns(index, sample, bam, read_groups, interval)
            for index, (sample, bam, read_groups) in enumerate(self._bams)
        ]
        merged = heapq.merge(*streams, key=lambda column: column[0])

        next_position = interval.start
        for position, columns in groupby(merged, key=lambda column: column[0]):
            if self.include_uncovered:
                for empty in range(next_position, position):
                    yield LocusData(interval.chrom, empty, ReadBackedPileup())
            elements: list[PileupElement] = []
            downsampled = False
            for _pos, column_elements, column_downsampled in columns:
                elements.extend(column_elements)
                downsampled = downsampled or column_downsampled
            yield LocusData(interval.chrom, position, ReadBackedPileup(elements), downsampled)
            next_position = position + 1

        if self.include_uncovered:
            for empty in range(next_position, interval.end):
                yield LocusData(interval.chrom, empty, ReadBackedPileup())

    def _columns(
        self,
        index: int,
        default_sample: str,
        bam: pysam.AlignmentFile,
        read_groups: dict[str, str],
        interval: GenomicInterval,
    ) -> Iterator[tuple[int, list[PileupElement], bool]]:
        contig = CoordinateKernel.resolve_contig(interval.chrom, set(bam.references))
        if contig is None:
            logger.debug("Contig %s absent from BAM %d; no reads", interval.chrom, index)
            return

        cache: dict[tuple, AlignedRead] = {}
        columns = bam.pileup(
            contig,
            interval.start,
            interval.end,
            truncate=True,
            max_depth=self.max_depth,
            min_base_quality=0,
            ignore_orphans=False,
        )
        for n, column in enumerate(columns):
            if n and n % _CACHE_PURGE_INTERVAL == 0:
                position = column.reference_pos
                cache = {k: v for k, v in cache.items() if k[2] >= position}

            elements = []
            for pileup_read in column.pileups:
                if pileup_read.is_refskip:
                    continue
                aln = pileup_read.alignment
                if aln.query_sequence is None:
                    continue
                key = (aln.query_name, aln.flag, aln.reference_end or 0, aln.reference_start)
                read = cache.get(key)
                if read is None:
                    sample = default_sample
                    if aln.has_tag("RG"):
                        sample = read_groups.get(aln.get_tag("RG"), default_sample)
                    read = self._to_aligned_read(aln, sample)
                    cache[key] = read
                elements.append(self._to_element(pileup_read, read))

            downsampled = column.nsegments >= self.max_depth
            yield column.reference_pos, elements, downsampled

    @staticmethod
    def _to_aligned_read(aln: pysam.AlignedSegment, sample: str) -> AlignedRead:
        bases = aln.query_sequence.upper()
        qualities = aln.query_qualities
        return AlignedRead(
            name=aln.query_name,
            sample=sample,
            mapping_quality=aln.mapping_quality,
            is_reverse=aln.is_reverse,
            bases=bases,
            qualities=tuple(qualities) if qualities is not None else (0,) * len(bases),
            reference_positions=tuple(aln.get_reference_positions(full_length=True)),
            has_bad_mate=_has_bad_mate(aln),
        )

    @staticmethod
    def _to_element(pileup_read: pysam.PileupRead, read: AlignedRead) -> PileupElement:
        if pileup_read.is_del:
            return PileupElement(read=read, offset=None, is_deletion=True)

        offset = pileup_read.query_position
        indel_event = None
        if pileup_read.indel > 0:
            indel_event = "+" + read.bases[offset + 1 : offset + 1 + pileup_read.indel]
        elif pileup_read.indel < 0:
            indel_event = f"-{-pileup_read.indel}"
        return PileupElement(read=read, offset=offset, indel_event=indel_event)

    def close(self) -> None:
        for _sample, bam, _rg in self._bams:
            bam.close()

    def __enter__(self) -> "BamLocusSource":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class VcfKnownSites:
    """
    Known sites loaded from a VCF for genotyping given alleles.

    Records are read once into memory so lookups are safe from any thread.
    Contig names match with or without a 'chr' prefix.
    """

    def __init__(self, path: Path):
        self.path = path
        self._sites: dict[tuple[str, int], KnownSite] = {}
        with pysam.VariantFile(str(path)) as vcf:
            for record in vcf:
                if not record.alts:
                    continue
                key = (CoordinateKernel.normalize_chromosome(record.chrom), record.pos - 1)
                if key in self._sites:
                    logger.debug("Duplicate known site at %s:%d; keeping the first", record.chrom, record.pos)
                    continue
                self._sites[key] = KnownSite(
                    contig=record.chrom,
                    # pysam record.pos is the 1-based VCF POS
                    position=CoordinateKernel.vcf_to_internal_pos(record.pos),
                    alleles=tuple(a.upper() for a in record.alleles),
                    filtered=any(f != "PASS" for f in record.filter.keys()),
                    site_id=record.id,
                )
        logger.info("Loaded %d known sites from %s", len(self._sites), path)

    def __len__(self) -> int:
        return len(self._sites)

    def get_site(self, contig: str, position: int) -> KnownSite | None:
        return self._sites.get((CoordinateKernel.normalize_chromosome(contig), position))
