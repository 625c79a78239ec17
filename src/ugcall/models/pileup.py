"""
Read-level data structures consumed by the genotyping engine.

A locus arrives as a :class:`LocusData` holding a :class:`ReadBackedPileup`.
The engine splits it per sample (and per strand for strand bias) and marks
each :class:`PileupElement` good or bad before computing likelihoods.
"""

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field, replace

from ..config import ReadOrientation

BASES = ("A", "C", "G", "T")
DELETION_BASE = "D"


def is_regular_base(base: str) -> bool:
    """True for A, C, G or T (case-insensitive)."""
    return base.upper() in BASES


@dataclass(frozen=True)
class AlignedRead:
    """
    The subset of an alignment record the caller needs.

    Attributes
    ----------
    name:
        Query name.
    sample:
        Sample the read belongs to.
    mapping_quality:
        Phred-scaled mapping quality.
    is_reverse:
        True when the read aligned to the reverse strand.
    bases:
        Query sequence, uppercase.
    qualities:
        Phred base qualities, one per query base.
    reference_positions:
        0-based reference coordinate of each query offset, ``None`` for
        inserted or soft-clipped bases.
    has_bad_mate:
        True when the mate maps to a different contig.
    """

    name: str
    sample: str
    mapping_quality: int
    is_reverse: bool
    bases: str
    qualities: tuple[int, ...]
    reference_positions: tuple[int | None, ...]
    has_bad_mate: bool = False


@dataclass(frozen=True)
class PileupElement:
    """One read's observation at a locus."""

    read: AlignedRead
    offset: int | None
    is_deletion: bool = False
    indel_event: str | None = None  # "+ACG" insertion or "-2" deletion after this base
    good: bool = True

    @property
    def base(self) -> str:
        if self.is_deletion or self.offset is None:
            return DELETION_BASE
        return self.read.bases[self.offset].upper()

    @property
    def qual(self) -> int:
        if self.is_deletion or self.offset is None:
            return 0
        return self.read.qualities[self.offset]

    @property
    def mapping_quality(self) -> int:
        return self.read.mapping_quality

    @property
    def is_reverse(self) -> bool:
        return self.read.is_reverse

    @property
    def sample(self) -> str:
        return self.read.sample

    def with_good(self, good: bool) -> "PileupElement":
        return replace(self, good=good)


class ReadBackedPileup:
    """Ordered collection of pileup elements at a single locus."""

    def __init__(self, elements: Iterable[PileupElement] = ()):
        self._elements = list(elements)

    def __iter__(self) -> Iterator[PileupElement]:
        return iter(self._elements)

    def __len__(self) -> int:
        return len(self._elements)

    def __bool__(self) -> bool:
        return bool(self._elements)

    def __repr__(self) -> str:
        return f"ReadBackedPileup(size={len(self._elements)})"

    @property
    def size(self) -> int:
        return len(self._elements)

    def split_by_sample(self, assume_single_sample: str | None = None) -> dict[str, "ReadBackedPileup"]:
        """Partition by sample name, preserving element order within each sample."""
        if assume_single_sample is not None:
            return {assume_single_sample: ReadBackedPileup(self._elements)} if self._elements else {}

        by_sample: dict[str, list[PileupElement]] = {}
        for element in self._elements:
            by_sample.setdefault(element.sample, []).append(element)
        return {sample: ReadBackedPileup(elements) for sample, elements in by_sample.items()}

    def get_orientation(self, orientation: ReadOrientation) -> "ReadBackedPileup":
        if orientation == ReadOrientation.COMPLETE:
            return self
        want_reverse = orientation == ReadOrientation.REVERSE
        return ReadBackedPileup(e for e in self._elements if e.is_reverse == want_reverse)

    def good_bases(self) -> "ReadBackedPileup":
        """Good, non-deletion elements."""
        return ReadBackedPileup(e for e in self._elements if e.good and not e.is_deletion)

    def deletions(self) -> "ReadBackedPileup":
        return ReadBackedPileup(e for e in self._elements if e.is_deletion)


@dataclass(frozen=True)
class ReferenceContext:
    """
    Reference base at a locus plus a window of surrounding sequence.

    ``fetch(start, end)`` returns reference bases of the same contig, clipped
    to it; when set, :meth:`covering` can grow the window.
    """

    contig: str
    position: int  # 0-based
    window_start: int
    bases: str
    fetch: Callable[[int, int], str] | None = field(default=None, repr=False, compare=False)

    @property
    def base(self) -> str:
        return self.bases[self.position - self.window_start].upper()

    @property
    def window_end(self) -> int:
        return self.window_start + len(self.bases)

    def base_at(self, position: int) -> str | None:
        """Reference base at ``position``, or None outside the window."""
        if self.window_start <= position < self.window_end:
            return self.bases[position - self.window_start].upper()
        return None

    def sequence(self, start: int, end: int) -> str:
        """Reference bases in [start, end), clipped to the window."""
        lo = max(start, self.window_start) - self.window_start
        hi = min(end, self.window_end) - self.window_start
        return self.bases[lo:hi].upper() if hi > lo else ""

    def covering(self, start: int, end: int) -> "ReferenceContext":
        """This context with its window grown to include [start, end), as far as the contig allows."""
        if self.fetch is None or (self.window_start <= start and end <= self.window_end):
            return self
        window_start = max(0, min(start, self.window_start))
        bases = self.fetch(window_start, max(end, self.window_end))
        return replace(self, window_start=window_start, bases=bases)


@dataclass
class LocusData:
    """Everything the traversal knows about one locus."""

    contig: str
    position: int  # 0-based
    pileup: ReadBackedPileup
    downsampled: bool = False

    @property
    def size(self) -> int:
        return len(self.pileup)
