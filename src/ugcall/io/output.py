"""
Output Writers: Formatting calls as VCF.

Records are formatted by hand, one line per call, with a fixed header that
declares every INFO, FORMAT and FILTER key the engine produces.
"""

from pathlib import Path
from typing import TextIO

from ..core.kernel import CoordinateKernel
from ..models.calls import (
    DEPTH_KEY,
    DOWNSAMPLED_KEY,
    LOW_QUAL_FILTER_NAME,
    PHRED_LIKELIHOODS_KEY,
    STRAND_BIAS_KEY,
    Genotype,
    VariantContext,
)


def _format_float(value: float) -> str:
    return f"{value:.2f}"


class VcfWriter:
    """Writes calls for a fixed list of samples to a VCF 4.2 file."""

    def __init__(
        self,
        path: Path,
        samples: list[str],
        contig_lengths: dict[str, int] | None = None,
        source: str = "ugcall",
        standard_confidence_for_calling: float = 30.0,
    ):
        self.path = path
        self.samples = list(samples)
        self.contig_lengths = contig_lengths or {}
        self.source = source
        self.standard_confidence_for_calling = standard_confidence_for_calling
        self.file: TextIO = open(path, "w")
        self._headers_written = False
        self.records_written = 0

    def _write_header(self) -> None:
        headers = [
            "##fileformat=VCFv4.2",
            f"##source={self.source}",
            f'##FILTER=<ID={LOW_QUAL_FILTER_NAME},Description="Low quality '
            f'(QUAL < {self.standard_confidence_for_calling:g})">',
            f'##INFO=<ID={DEPTH_KEY},Number=1,Type=Integer,Description="Total depth of usable bases">',
            f'##INFO=<ID={DOWNSAMPLED_KEY},Number=0,Type=Flag,Description="Were any of the samples downsampled?">',
            f'##INFO=<ID={STRAND_BIAS_KEY},Number=1,Type=Float,Description="Strand Bias">',
            '##FORMAT=<ID=GT,Number=1,Type=String,Description="Genotype">',
            '##FORMAT=<ID=GQ,Number=1,Type=Integer,Description="Genotype Quality">',
            f'##FORMAT=<ID={DEPTH_KEY},Number=1,Type=Integer,Description="Approximate read depth">',
            f'##FORMAT=<ID={PHRED_LIKELIHOODS_KEY},Number=G,Type=Integer,'
            f'Description="Normalized, Phred-scaled likelihoods for genotypes">',
        ]
        for contig, length in self.contig_lengths.items():
            headers.append(f"##contig=<ID={contig},length={length}>")
        columns = ["#CHROM", "POS", "ID", "REF", "ALT", "QUAL", "FILTER", "INFO", "FORMAT"]
        headers.append("\t".join(columns + self.samples))
        self.file.write("\n".join(headers) + "\n")
        self._headers_written = True

    def write(self, vc: VariantContext) -> None:
        if not self._headers_written:
            self._write_header()

        alleles = [vc.reference] + vc.alternate_alleles
        allele_index = {allele.bases: i for i, allele in enumerate(alleles)}
        alts = ",".join(a.bases for a in vc.alternate_alleles) or "."
        qual = vc.phred_scaled_qual
        if vc.filters is None:
            filter_str = "."
        else:
            filter_str = ";".join(sorted(vc.filters)) or "PASS"

        row = [
            vc.contig,
            str(CoordinateKernel.internal_to_vcf_pos(vc.start)),
            ".",
            vc.reference.bases,
            alts,
            _format_float(qual) if qual is not None else ".",
            filter_str,
            self._format_info(vc),
            "GT:GQ:DP:PL",
        ]
        for sample in self.samples:
            row.append(self._format_genotype(vc.genotypes.get(sample), allele_index))

        self.file.write("\t".join(row) + "\n")
        self.records_written += 1

    @staticmethod
    def _format_info(vc: VariantContext) -> str:
        fields = []
        depths = [g.attributes.get(DEPTH_KEY) for g in vc.genotypes.values()]
        depths = [d for d in depths if d is not None]
        if depths:
            fields.append(f"{DEPTH_KEY}={sum(depths)}")
        if vc.attributes.get(DOWNSAMPLED_KEY):
            fields.append(DOWNSAMPLED_KEY)
        if STRAND_BIAS_KEY in vc.attributes:
            fields.append(f"{STRAND_BIAS_KEY}={_format_float(vc.attributes[STRAND_BIAS_KEY])}")
        return ";".join(fields) or "."

    @staticmethod
    def _format_genotype(genotype: Genotype | None, allele_index: dict[str, int]) -> str:
        if genotype is None or genotype.is_no_call:
            return "./.:.:.:."
        gt = "/".join(str(allele_index.get(a.bases, ".")) for a in genotype.alleles)
        gq = genotype.gq
        depth = genotype.attributes.get(DEPTH_KEY)
        pl = genotype.attributes.get(PHRED_LIKELIHOODS_KEY)
        return ":".join(
            [
                gt,
                str(gq) if gq is not None else ".",
                str(depth) if depth is not None else ".",
                ",".join(str(p) for p in pl) if pl else ".",
            ]
        )

    def close(self) -> None:
        if not self._headers_written:
            self._write_header()
        self.file.close()

    def __enter__(self) -> "VcfWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
