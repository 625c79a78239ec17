"""
Known-site records used when genotyping given alleles.
"""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class KnownSite:
    """A site from an external list; ``alleles[0]`` is the reference."""

    contig: str
    position: int  # 0-based
    alleles: tuple[str, ...]
    filtered: bool = False
    site_id: str | None = None

    @property
    def ref(self) -> str:
        return self.alleles[0]

    @property
    def alternates(self) -> tuple[str, ...]:
        return self.alleles[1:]

    @property
    def is_snp(self) -> bool:
        return bool(self.alternates) and all(len(a) == 1 for a in self.alleles)

    @property
    def is_biallelic(self) -> bool:
        return len(self.alleles) == 2


class KnownSitesTracker(Protocol):
    """Lookup of known sites by locus."""

    def get_site(self, contig: str, position: int) -> KnownSite | None: ...
