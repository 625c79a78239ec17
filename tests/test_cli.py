"""Tests for CLI module."""

from typer.testing import CliRunner

from ugcall import __version__
from ugcall.cli import app

runner = CliRunner()


def test_cli_version():
    """Test version command."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"ugcall {__version__}" in result.stdout


def test_cli_help():
    """Test help command."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "call" in result.stdout


def test_cli_missing_required_args():
    """Test CLI with missing required arguments."""
    result = runner.invoke(app, ["call"])
    assert result.exit_code != 0


def test_cli_missing_bam(sample_fasta, temp_dir):
    result = runner.invoke(
        app,
        ["call", "-b", str(temp_dir / "missing.bam"), "-f", str(sample_fasta), "-o", str(temp_dir / "out.vcf")],
    )
    assert result.exit_code == 1


def test_cli_invalid_threshold(het_bam, sample_fasta, temp_dir):
    result = runner.invoke(
        app,
        [
            "call",
            "-b", str(het_bam),
            "-f", str(sample_fasta),
            "-o", str(temp_dir / "out.vcf"),
            "--stand-call-conf", "-5",
        ],
    )
    assert result.exit_code == 1


def test_cli_given_alleles_requires_sites(het_bam, sample_fasta, temp_dir):
    result = runner.invoke(
        app,
        [
            "call",
            "-b", str(het_bam),
            "-f", str(sample_fasta),
            "-o", str(temp_dir / "out.vcf"),
            "--genotyping-mode", "GENOTYPE_GIVEN_ALLELES",
        ],
    )
    assert result.exit_code == 1


def test_cli_bad_region(het_bam, sample_fasta, temp_dir):
    result = runner.invoke(
        app,
        ["call", "-b", str(het_bam), "-f", str(sample_fasta), "-o", str(temp_dir / "out.vcf"), "-L", "chrX:1-5"],
    )
    assert result.exit_code == 1


def test_cli_call(het_bam, ref_bam, sample_fasta, temp_dir):
    output = temp_dir / "out.vcf"
    result = runner.invoke(
        app,
        [
            "call",
            "-b", f"tumor={het_bam}",
            "-b", str(ref_bam),
            "-f", str(sample_fasta),
            "-o", str(output),
            "-L", "chr1:91-120",
            "--threads", "2",
        ],
    )
    assert result.exit_code == 0, result.output
    data = [line for line in output.read_text().splitlines() if not line.startswith("#")]
    assert len(data) == 1
    assert data[0].split("\t")[1] == "101"
