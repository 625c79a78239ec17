"""
Pipeline Orchestrator: Manages the execution flow of ugcall.

This module handles:
1. Resolving regions against the reference and splitting them into chunks.
2. Calling every chunk on a joblib worker with its own file handles and workspace.
3. Writing emitted calls, in reference order, to a VCF file.
"""

import logging
from collections.abc import Iterable, Iterator
from contextlib import ExitStack
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path

from rich.console import Console

from .config import OutputMode
from .core.kernel import CoordinateKernel
from .engine import GenotypingEngine, VariantAnnotator
from .io.input import BamLocusSource, FastaReference, VcfKnownSites
from .io.output import VcfWriter
from .models.calls import VariantCallContext
from .models.core import GenomicInterval, PipelineConfig
from .models.pileup import LocusData, ReferenceContext
from .parallel import ParallelProcessor
from .utils.logging import timed

logger = logging.getLogger(__name__)


@dataclass
class ChunkResult:
    """Calls made on one chunk."""

    interval: GenomicInterval
    calls: list[VariantCallContext] = field(default_factory=list)
    loci_processed: int = 0


@dataclass
class PipelineResult:
    """Summary of a finished run."""

    output_vcf: Path
    loci_processed: int
    calls_emitted: int
    confident_calls: int


def _paired_contexts(
    loci: Iterable[LocusData], contexts: Iterator[ReferenceContext]
) -> Iterator[tuple[ReferenceContext, LocusData]]:
    """Pair each locus with its reference context; both streams are position sorted."""
    context = next(contexts, None)
    for locus in loci:
        while context is not None and context.position < locus.position:
            context = next(contexts, None)
        if context is None:
            return
        yield context, locus


class CallingPipeline:
    def __init__(self, config: PipelineConfig, annotator: VariantAnnotator | None = None):
        self.config = config
        self.annotator = annotator
        self.console = Console(stderr=True)

    def run(self, show_progress: bool = True) -> PipelineResult:
        """Execute the pipeline."""
        config = self.config
        self.console.print("[bold blue]Starting ugcall pipeline[/bold blue]")

        with FastaReference(config.reference_fasta) as reference:
            contig_lengths = dict(reference.contig_lengths)
        chunks = self._chunks(contig_lengths)
        self.console.print(f"Calling [bold]{len(chunks)}[/bold] chunks with {config.threads} thread(s)")

        known_sites = None
        if config.known_sites_vcf is not None:
            with self.console.status("[bold green]Loading known sites...[/bold green]"):
                known_sites = VcfKnownSites(config.known_sites_vcf)

        with BamLocusSource(config.bam_files) as source:
            samples = source.samples

        with ExitStack() as stack:
            verbose_writer = None
            if config.verbose_log is not None:
                verbose_writer = stack.enter_context(open(config.verbose_log, "w"))

            engine = GenotypingEngine(
                config.caller,
                samples,
                known_sites=known_sites,
                annotator=self.annotator,
                verbose_writer=verbose_writer,
            )

            processor = ParallelProcessor(
                n_jobs=config.threads, backend=config.backend, console=self.console
            )
            with timed(f"Calling {len(chunks)} chunks", logger):
                results = processor.map(
                    partial(self._call_chunk, engine),
                    chunks,
                    description="Calling variants",
                    show_progress=show_progress,
                )

        loci_processed = sum(r.loci_processed for r in results)
        emitted = [c for r in results for c in r.calls if c.should_emit and c.vc is not None]

        with VcfWriter(
            config.output_vcf,
            engine.samples,
            contig_lengths=contig_lengths,
            standard_confidence_for_calling=config.caller.standard_confidence_for_calling,
        ) as writer:
            for call in emitted:
                writer.write(call.vc)

        confident = sum(1 for c in emitted if c.confidently_called)
        self.console.print(
            f"[bold green]Done.[/bold green] {loci_processed} loci, "
            f"{len(emitted)} records ({confident} confident) written to {config.output_vcf}"
        )
        return PipelineResult(config.output_vcf, loci_processed, len(emitted), confident)

    def _chunks(self, contig_lengths: dict[str, int]) -> list[GenomicInterval]:
        if self.config.regions:
            intervals = [CoordinateKernel.parse_region(r, contig_lengths) for r in self.config.regions]
        else:
            intervals = [
                GenomicInterval(chrom=contig, start=0, end=length)
                for contig, length in contig_lengths.items()
            ]
        chunks = []
        for interval in intervals:
            chunks.extend(CoordinateKernel.chunk_interval(interval, self.config.chunk_size))
        return chunks

    def _call_chunk(self, engine: GenotypingEngine, interval: GenomicInterval) -> ChunkResult:
        """Call one chunk. Runs on a worker; opens its own file handles."""
        config = self.config
        result = ChunkResult(interval)
        workspace = engine.new_workspace()
        include_uncovered = config.caller.output_mode == OutputMode.EMIT_ALL_SITES

        with (
            FastaReference(config.reference_fasta) as reference,
            BamLocusSource(config.bam_files, config.max_depth, include_uncovered) as source,
        ):
            pairs = _paired_contexts(source.loci(interval), reference.iter_contexts(interval))
            for ref_context, locus in pairs:
                result.loci_processed += 1
                call = engine.calculate_likelihoods_and_genotypes(ref_context, locus, workspace)
                if call is not None:
                    result.calls.append(call)

        logger.debug(
            "%s:%d-%d: %d loci, %d calls",
            interval.chrom, interval.start + 1, interval.end, result.loci_processed, len(result.calls),
        )
        return result
