"""Mode enumerations shared by the calling engine and its configuration."""

from enum import Enum, IntEnum


class OutputMode(str, Enum):
    """Which sites the engine emits."""

    EMIT_VARIANTS_ONLY = "EMIT_VARIANTS_ONLY"
    EMIT_ALL_CONFIDENT_SITES = "EMIT_ALL_CONFIDENT_SITES"
    EMIT_ALL_SITES = "EMIT_ALL_SITES"


class GenotypingMode(str, Enum):
    """Whether alternate alleles are discovered or read from a site list."""

    DISCOVERY = "DISCOVERY"
    GENOTYPE_GIVEN_ALLELES = "GENOTYPE_GIVEN_ALLELES"


class AFModel(str, Enum):
    """Allele frequency calculation strategy."""

    EXACT = "EXACT"
    GRID_SEARCH = "GRID_SEARCH"


class GLModel(str, Enum):
    """Genotype likelihood model."""

    SNP = "SNP"
    INDEL = "INDEL"


class ReadOrientation(str, Enum):
    """Strand stratification of a pileup."""

    COMPLETE = "COMPLETE"
    FORWARD = "FORWARD"
    REVERSE = "REVERSE"


class DiploidGenotype(IntEnum):
    """Index of each biallelic diploid genotype in a likelihood triple."""

    HOM_REF = 0  # AA
    HET = 1  # AB
    HOM_VAR = 2  # BB
