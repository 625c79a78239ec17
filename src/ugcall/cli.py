"""
CLI Entry Point: Exposes ugcall via the command line.
"""

from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console

from . import __version__
from .config import AFModel, GenotypingMode, GLModel, OutputMode
from .exceptions import UgcallError
from .models.core import CallerConfig, PipelineConfig
from .pipeline import CallingPipeline
from .utils.logging import setup_logging

app = typer.Typer(help="ugcall: Bayesian SNP and indel genotyping from BAM pileups")

console = Console(stderr=True)


@app.callback()
def main():
    """
    ugcall: Bayesian SNP and indel genotyping from BAM pileups
    """
    pass


def _parse_bams(bam_files: list[str]) -> dict[str, Path]:
    """Map ``NAME=PATH`` or bare ``PATH`` arguments to sample names (filename stem by default)."""
    bams: dict[str, Path] = {}
    for arg in bam_files:
        if "=" in arg:
            name, path_str = arg.split("=", 1)
            path = Path(path_str)
        else:
            path = Path(arg)
            name = path.stem
        if not path.exists():
            console.print(f"[bold red]Error: BAM file not found: {path}[/bold red]")
            raise typer.Exit(code=1)
        if name in bams:
            console.print(f"[bold red]Error: duplicate sample name: {name}[/bold red]")
            raise typer.Exit(code=1)
        bams[name] = path
    return bams


@app.command()
def call(
    bam_files: list[str] = typer.Option(
        ..., "--bam", "-b", help="BAM file, optionally as NAME=PATH. Can be specified multiple times."
    ),
    reference: Path = typer.Option(..., "--fasta", "-f", help="Path to indexed reference FASTA"),
    output: Path = typer.Option(..., "--output", "-o", help="Output VCF path"),
    regions: list[str] | None = typer.Option(
        None, "--region", "-L", help="Region to call (chr1:101-200). Can be specified multiple times."
    ),
    known_sites: Path | None = typer.Option(
        None, "--alleles", help="VCF of known sites for GENOTYPE_GIVEN_ALLELES mode"
    ),
    output_mode: OutputMode = typer.Option(OutputMode.EMIT_VARIANTS_ONLY, "--output-mode"),
    genotyping_mode: GenotypingMode = typer.Option(GenotypingMode.DISCOVERY, "--genotyping-mode"),
    af_model: AFModel = typer.Option(AFModel.EXACT, "--af-model"),
    gl_model: GLModel = typer.Option(GLModel.SNP, "--gl-model"),
    heterozygosity: float = typer.Option(1e-3, "--heterozygosity", help="SNP heterozygosity prior"),
    indel_heterozygosity: float = typer.Option(1.0 / 8000, "--indel-heterozygosity"),
    min_base_quality: int = typer.Option(17, "--min-base-quality"),
    min_mapping_quality: int = typer.Option(20, "--min-mapping-quality"),
    max_deletion_fraction: float = typer.Option(0.05, "--max-deletion-fraction"),
    max_mismatches: int = typer.Option(3, "--max-mismatches", help="Mismatches allowed within 20 bases"),
    coverage_abort: int = typer.Option(-1, "--coverage-abort", help="Skip loci deeper than this (<=0 disables)"),
    stand_call_conf: float = typer.Option(30.0, "--stand-call-conf"),
    stand_emit_conf: float = typer.Option(30.0, "--stand-emit-conf"),
    use_badly_mated_reads: bool = typer.Option(False, "--use-badly-mated-reads"),
    no_slod: bool = typer.Option(False, "--no-slod", help="Do not compute the strand bias score"),
    assume_single_sample: str | None = typer.Option(
        None, "--assume-single-sample", help="Treat all reads as coming from this sample"
    ),
    verbose_log: Path | None = typer.Option(
        None, "--verbose-log", help="Write per-locus allele frequency posteriors here"
    ),
    threads: int = typer.Option(1, "--threads", "-t", help="Number of worker threads"),
    chunk_size: int = typer.Option(100_000, "--chunk-size", help="Bases per work unit"),
    max_depth: int = typer.Option(8000, "--max-depth", help="Pileup depth cap per BAM"),
    log_file: Path | None = typer.Option(None, "--log-file", help="Also write logs to this file"),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Enable verbose debug logging"),
):
    """
    Call variants and genotypes from one or more BAM files.
    """
    setup_logging(verbose=verbose, log_file=str(log_file) if log_file else None)

    bams = _parse_bams(bam_files)

    try:
        caller = CallerConfig(
            heterozygosity=heterozygosity,
            indel_heterozygosity=indel_heterozygosity,
            min_base_quality=min_base_quality,
            min_mapping_quality=min_mapping_quality,
            max_deletion_fraction=max_deletion_fraction,
            max_mismatches=max_mismatches,
            use_badly_mated_reads=use_badly_mated_reads,
            coverage_abort=coverage_abort,
            assume_single_sample=assume_single_sample,
            standard_confidence_for_calling=stand_call_conf,
            standard_confidence_for_emitting=stand_emit_conf,
            output_mode=output_mode,
            genotyping_mode=genotyping_mode,
            af_model=af_model,
            gl_model=gl_model,
            no_slod=no_slod,
        )
        config = PipelineConfig(
            bam_files=bams,
            reference_fasta=reference,
            known_sites_vcf=known_sites,
            regions=regions or [],
            output_vcf=output,
            verbose_log=verbose_log,
            threads=threads,
            chunk_size=chunk_size,
            max_depth=max_depth,
            caller=caller,
        )
    except ValidationError as e:
        console.print(f"[bold red]Invalid configuration:[/bold red]\n{e}")
        raise typer.Exit(code=1) from e

    try:
        CallingPipeline(config).run()
    except (UgcallError, ValueError, OSError) as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e


@app.command()
def version():
    """Print the ugcall version."""
    typer.echo(f"ugcall {__version__}")


if __name__ == "__main__":
    app()
