"""
BAM reader module for modscope.

Wraps pysam as the record source for every query: opens a local BAM or a
URL, exposes contig metadata and the modification types present, and turns
``pysam.AlignedSegment`` objects into immutable ``AlignmentRecord``s in the
file's natural order (reference order for region fetches, unmapped reads last
for whole-file iteration).
"""

from typing import Dict, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import pysam

from modscope.core.errors import ConfigurationError, NotFoundError
from modscope.core.mod_tags import parse_mm_ml
from modscope.core.records import (
    AlignmentKind,
    AlignmentRecord,
    Mapped,
    Unmapped,
)
from modscope.core.region import GenomicRegion


def _check_url(bam_path: str) -> str:
    parsed = urlparse(bam_path)
    if not parsed.scheme or not (parsed.netloc or parsed.path):
        raise ConfigurationError(f"Invalid URL: {bam_path}")
    return bam_path


def get_mm_ml_tags(read: pysam.AlignedSegment) -> Tuple[Optional[str], Optional[Sequence[int]]]:
    """Return (MM, ML) tag values, accepting the legacy Mm/Ml spelling."""
    mm_tag = None
    ml_tag = None
    if read.has_tag('MM'):
        mm_tag = read.get_tag('MM')
    elif read.has_tag('Mm'):
        mm_tag = read.get_tag('Mm')

    if read.has_tag('ML'):
        ml_tag = read.get_tag('ML')
    elif read.has_tag('Ml'):
        ml_tag = read.get_tag('Ml')
    return mm_tag, ml_tag


def record_from_segment(read: pysam.AlignedSegment) -> AlignmentRecord:
    """Convert a pysam segment into an AlignmentRecord (MM/ML kept raw, parsed on decode)."""
    kind = AlignmentKind.from_flags(
        read.is_unmapped, read.is_secondary, read.is_supplementary, read.is_reverse
    )

    if kind is AlignmentKind.UNMAPPED:
        outcome = Unmapped()
    else:
        outcome = Mapped(
            contig_id=read.reference_id,
            contig=read.reference_name,
            start=read.reference_start,
            end=read.reference_end,
            cigar=tuple(tuple(op) for op in (read.cigartuples or ())),
        )

    mm_tag, ml_tag = get_mm_ml_tags(read)

    return AlignmentRecord(
        read_id=read.query_name,
        sequence=read.query_sequence or '',
        qualities=read.query_qualities,
        mapq=read.mapping_quality,
        kind=kind,
        outcome=outcome,
        mm_tag=mm_tag,
        ml_tag=ml_tag,
    )


class BamSource:
    """
    Record source over one BAM file or URL.

    Use as a context manager; the underlying file is opened on construction
    so that a missing file is reported before any iteration begins.
    """

    def __init__(self, bam_path: str, treat_as_url: bool = False, threads: int = 1):
        if treat_as_url:
            _check_url(bam_path)
        self.bam_path = bam_path
        try:
            self._bam = pysam.AlignmentFile(bam_path, "rb", threads=threads)
        except (OSError, ValueError) as e:
            raise NotFoundError(f"Failed to open BAM '{bam_path}': {e}")

    def __enter__(self) -> 'BamSource':
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def close(self):
        self._bam.close()

    def _fetch_all(self):
        # fetch(until_eof=True) continues from the current file offset
        self._bam.reset()
        return self._bam.fetch(until_eof=True)

    def list_contigs(self) -> Dict[str, int]:
        """Get contig sizes from BAM header, in header order."""
        return dict(zip(self._bam.references, self._bam.lengths))

    def list_modification_tag_groups(self, n_sample: int = 100) -> List[Tuple[str, str, str]]:
        """
        Distinct (base, strand, code) triples seen in the MM tags of the
        first ``n_sample`` records, sorted.
        """
        found = set()
        for i, read in enumerate(self._fetch_all()):
            if i >= n_sample:
                break
            mm_tag, ml_tag = get_mm_ml_tags(read)
            for group in parse_mm_ml(mm_tag, ml_tag):
                found.add(group.key)
        return sorted(found)

    def check_index(self):
        """Region fetches need a .bai/.csi index."""
        if not self._bam.has_index():
            raise NotFoundError(f"No index found for '{self.bam_path}'; region queries need an indexed BAM")

    def iterate(self, region: Optional[GenomicRegion] = None) -> Iterator[AlignmentRecord]:
        """
        Lazily yield AlignmentRecords. With a region, only alignments
        overlapping it are fetched (unmapped reads are never returned).
        """
        if region is None:
            reads = self._fetch_all()
        else:
            contig, start, end = region.fetch_args()
            reads = self._bam.fetch(contig, start, end)

        for read in reads:
            yield record_from_segment(read)
