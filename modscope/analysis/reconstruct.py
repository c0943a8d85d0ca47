"""
Reference-anchored sequence reconstruction for seq_table.

The output covers exactly the query region: one character per reference
position, plus lowercase inserted bases that sit between two in-region
reference positions.

Markers:
    .       deletion, reference skip, or a position the read does not reach
    a-z     inserted base
    Z / z   modified base (aligned / inserted)
"""

from dataclasses import dataclass
from typing import Dict, List, Set

from modscope.core.errors import ConfigurationError
from modscope.core.records import (
    CIGAR_DEL,
    CIGAR_DIFF,
    CIGAR_EQUAL,
    CIGAR_INS,
    CIGAR_MATCH,
    CIGAR_SKIP,
    CIGAR_SOFT_CLIP,
    QUAL_UNAVAILABLE,
    AlignmentRecord,
    Mapped,
)
from modscope.core.region import GenomicRegion


GAP_CHAR = '.'
MOD_CHAR = 'Z'


@dataclass
class ReconstructedSequence:
    sequence: str
    qualities: List[int]

    @property
    def qualities_text(self) -> str:
        return '.'.join(str(q) for q in self.qualities)


def reconstruct(record: AlignmentRecord, region: GenomicRegion,
                modified: Set[int] = frozenset()) -> ReconstructedSequence:
    """
    Rebuild the part of ``record`` aligned to ``region``.

    Args:
        record: A mapped record on ``region.contig``
        region: Resolved region (``end`` set), 0-based half-open
        modified: Sequence positions to render as Z/z

    Returns:
        ReconstructedSequence with one quality per output character

    Raises:
        ConfigurationError: region without an end, or an unmapped record
    """
    if region.end is None:
        raise ConfigurationError("reconstruct needs a resolved region with an end coordinate")
    outcome = record.outcome
    if not isinstance(outcome, Mapped):
        raise ConfigurationError(f"Cannot reconstruct unmapped read {record.read_id}")

    start, end = region.start, region.end
    n_ref = end - start
    chars = [GAP_CHAR] * n_ref
    quals = [QUAL_UNAVAILABLE] * n_ref
    # insertions keyed by the region offset of the reference base that follows them
    inserts: Dict[int, List[tuple]] = {}

    seq = record.sequence
    q_pos = 0
    r_pos = outcome.start
    for op, length in outcome.cigar:
        if op in (CIGAR_MATCH, CIGAR_EQUAL, CIGAR_DIFF):
            for i in range(length):
                r = r_pos + i
                if start <= r < end:
                    q = q_pos + i
                    chars[r - start] = MOD_CHAR if q in modified else seq[q].upper()
                    quals[r - start] = record.base_qual(q)
            q_pos += length
            r_pos += length
        elif op == CIGAR_INS:
            if start < r_pos < end:
                inserted = inserts.setdefault(r_pos - start, [])
                for q in range(q_pos, q_pos + length):
                    char = MOD_CHAR.lower() if q in modified else seq[q].lower()
                    inserted.append((char, record.base_qual(q)))
            q_pos += length
        elif op in (CIGAR_DEL, CIGAR_SKIP):
            r_pos += length
        elif op == CIGAR_SOFT_CLIP:
            q_pos += length

    out_chars: List[str] = []
    out_quals: List[int] = []
    for offset in range(n_ref):
        for char, qual in inserts.get(offset, ()):
            out_chars.append(char)
            out_quals.append(qual)
        out_chars.append(chars[offset])
        out_quals.append(quals[offset])

    return ReconstructedSequence(''.join(out_chars), out_quals)
