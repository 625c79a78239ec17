"""Builders for synthetic pileups and small pysam files."""

from pathlib import Path

import pysam

from ugcall.models.pileup import AlignedRead, LocusData, PileupElement, ReadBackedPileup, ReferenceContext

REFERENCE_SEQUENCE = "ACGT" * 50
SAMPLE_NAME = "NA12878"
LOCUS = 100  # 0-based; REFERENCE_SEQUENCE[100] == "A"


def reference_context(ref_base: str = "A", position: int = LOCUS, contig: str = "chr1") -> ReferenceContext:
    """A reference window of G's around ``ref_base``."""
    flank = 25
    bases = "G" * flank + ref_base + "G" * flank
    return ReferenceContext(contig=contig, position=position, window_start=position - flank, bases=bases)


def element(
    base: str,
    qual: int = 30,
    mapq: int = 60,
    sample: str = SAMPLE_NAME,
    reverse: bool = False,
    position: int = LOCUS,
    name: str = "read",
    has_bad_mate: bool = False,
    deletion: bool = False,
    indel_event: str | None = None,
) -> PileupElement:
    """A single-base read observed at ``position``."""
    read = AlignedRead(
        name=name,
        sample=sample,
        mapping_quality=mapq,
        is_reverse=reverse,
        bases=base,
        qualities=(qual,),
        reference_positions=(position,),
        has_bad_mate=has_bad_mate,
    )
    return PileupElement(read=read, offset=None if deletion else 0, is_deletion=deletion, indel_event=indel_event)


def sample_elements(
    sample: str = SAMPLE_NAME,
    ref_count: int = 0,
    alt_count: int = 0,
    ref: str = "A",
    alt: str = "T",
    qual: int = 30,
) -> list[PileupElement]:
    """Reference then alternate bases, alternating strands within each group."""
    elements = [
        element(ref, qual=qual, sample=sample, reverse=i % 2 == 1, name=f"{sample}-ref{i}")
        for i in range(ref_count)
    ]
    elements += [
        element(alt, qual=qual, sample=sample, reverse=i % 2 == 1, name=f"{sample}-alt{i}")
        for i in range(alt_count)
    ]
    return elements


def locus(elements: list[PileupElement], position: int = LOCUS, downsampled: bool = False) -> LocusData:
    return LocusData(contig="chr1", position=position, pileup=ReadBackedPileup(elements), downsampled=downsampled)


def write_bam(path: Path, reads: list[dict], sample: str, contig_length: int = len(REFERENCE_SEQUENCE)) -> Path:
    """
    Write coordinate-sorted reads to an indexed BAM.

    Each read dict needs ``name``, ``start`` and ``sequence``; optional keys
    are ``reverse``, ``cigar``, ``mapq`` and ``qual``.
    """
    header = {
        "HD": {"VN": "1.0", "SO": "coordinate"},
        "SQ": [{"LN": contig_length, "SN": "chr1"}],
        "RG": [{"ID": "rg1", "SM": sample}],
    }
    with pysam.AlignmentFile(str(path), "wb", header=header) as outf:
        for read_def in sorted(reads, key=lambda r: r["start"]):
            a = pysam.AlignedSegment()
            a.query_name = read_def["name"]
            a.query_sequence = read_def["sequence"]
            a.flag = 16 if read_def.get("reverse") else 0
            a.reference_id = 0
            a.reference_start = read_def["start"]
            a.mapping_quality = read_def.get("mapq", 60)
            a.cigar = read_def.get("cigar", ((0, len(read_def["sequence"])),))
            a.query_qualities = pysam.qualitystring_to_array(
                chr(read_def.get("qual", 30) + 33) * len(read_def["sequence"])
            )
            a.set_tag("RG", "rg1")
            outf.write(a)
    pysam.index(str(path))
    return path
