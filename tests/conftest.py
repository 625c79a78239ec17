"""Pytest configuration and fixtures."""

import sys
import tempfile
from collections.abc import Generator
from pathlib import Path

import pysam
import pytest

# Add src directory to path so tests use local code, not installed package
project_root = Path(__file__).parent.parent
src_dir = project_root / "src"
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from helpers import REFERENCE_SEQUENCE, SAMPLE_NAME, write_bam  # noqa: E402


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_fasta(temp_dir: Path) -> Path:
    """A 200 bp single-contig reference ("ACGT" repeated)."""
    fasta_path = temp_dir / "reference.fa"
    with open(fasta_path, "w") as f:
        f.write(">chr1\n")
        for i in range(0, len(REFERENCE_SEQUENCE), 60):
            f.write(REFERENCE_SEQUENCE[i : i + 60] + "\n")
    pysam.faidx(str(fasta_path))
    return fasta_path


@pytest.fixture
def het_bam(temp_dir: Path) -> Path:
    """
    20 reads over chr1:91-120; half carry T instead of A at chr1:101.

    Reads alternate strands and belong to read group rg1 (SM=NA12878).
    """
    reads = []
    for i in range(20):
        seq = list(REFERENCE_SEQUENCE[90:120])
        if i % 2 == 0:
            seq[10] = "T"
        reads.append(
            {
                "name": f"read{i}",
                "start": 90,
                "sequence": "".join(seq),
                "reverse": i % 4 >= 2,
            }
        )
    return write_bam(temp_dir / "het.bam", reads, sample=SAMPLE_NAME)


@pytest.fixture
def ref_bam(temp_dir: Path) -> Path:
    """10 reference-matching reads over chr1:91-120 for a second sample."""
    reads = [
        {"name": f"ref{i}", "start": 90, "sequence": REFERENCE_SEQUENCE[90:120], "reverse": i % 2 == 1}
        for i in range(10)
    ]
    return write_bam(temp_dir / "ref.bam", reads, sample="NA12891")


@pytest.fixture
def known_sites_vcf(temp_dir: Path) -> Path:
    """Known sites: a PASS SNP at chr1:101 and a filtered SNP at chr1:105."""
    vcf_path = temp_dir / "known.vcf"
    with open(vcf_path, "w") as f:
        f.write("##fileformat=VCFv4.2\n")
        f.write("##contig=<ID=chr1,length=200>\n")
        f.write('##FILTER=<ID=LowQual,Description="Low quality">\n')
        f.write("#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\n")
        f.write("chr1\t101\trs1\tA\tT\t50\tPASS\t.\n")
        f.write("chr1\t105\trs2\tA\tC\t5\tLowQual\t.\n")
    return vcf_path
