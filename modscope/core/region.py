"""
Genomic region strings: ``contig``, ``contig:start-end`` and ``contig:start-``.

Coordinates are 0-based and half-open, so ``chr1:0-10`` covers the first ten
reference bases of ``chr1``.
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from modscope.core.errors import ConfigurationError, NotFoundError


_INTERVAL_RE = re.compile(r'^(?P<start>[\d,]+)-(?P<end>[\d,]*)$')


@dataclass(frozen=True)
class GenomicRegion:
    """A contig, optionally narrowed to ``[start, end)``. ``end=None`` runs to the contig end."""
    contig: str
    start: int = 0
    end: Optional[int] = None

    def __str__(self) -> str:
        if self.start == 0 and self.end is None:
            return self.contig
        end = '' if self.end is None else str(self.end)
        return f"{self.contig}:{self.start}-{end}"

    def resolve(self, contig_lengths: Dict[str, int]) -> 'GenomicRegion':
        """Check the contig against a BAM header and fill in an open end."""
        if self.contig not in contig_lengths:
            raise NotFoundError(f"Region contig '{self.contig}' not found in BAM header")
        length = contig_lengths[self.contig]
        if self.start >= length:
            raise ConfigurationError(
                f"Region start {self.start} is beyond the end of {self.contig} (length {length})"
            )
        end = length if self.end is None else min(self.end, length)
        return GenomicRegion(self.contig, self.start, end)

    def overlaps(self, contig: str, start: int, end: int) -> bool:
        if contig != self.contig:
            return False
        region_end = end if self.end is None else self.end
        return start < region_end and end > self.start

    def is_contained_by(self, contig: str, start: int, end: int) -> bool:
        """True when the alignment ``[start, end)`` on ``contig`` spans the whole region."""
        if contig != self.contig or self.end is None:
            return False
        return start <= self.start and end >= self.end

    def contains_position(self, contig: str, pos: Optional[int]) -> bool:
        if pos is None or contig != self.contig:
            return False
        return pos >= self.start and (self.end is None or pos < self.end)

    def fetch_args(self) -> Tuple[str, int, Optional[int]]:
        return self.contig, self.start, self.end


def parse_region(text: str) -> GenomicRegion:
    """
    Parse a region string.

    The part after the last ``:`` is treated as an interval only when it looks
    like one, so contig names containing ``:`` still parse as plain contigs.
    Thousands separators are accepted in coordinates.
    """
    if not isinstance(text, str) or not text.strip():
        raise ConfigurationError(f"Invalid region: {text!r}")
    text = text.strip()

    contig, sep, interval = text.rpartition(':')
    match = _INTERVAL_RE.match(interval) if sep else None
    if match is None:
        return GenomicRegion(text)
    if not contig:
        raise ConfigurationError(f"Invalid region '{text}': missing contig name")

    start = int(match.group('start').replace(',', ''))
    end_str = match.group('end').replace(',', '')
    if not end_str:
        return GenomicRegion(contig, start, None)

    end = int(end_str)
    if end <= start:
        raise ConfigurationError(f"Invalid region '{text}': end must be greater than start")
    return GenomicRegion(contig, start, end)
