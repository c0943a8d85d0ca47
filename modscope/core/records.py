"""
Data model for alignment records and their decoded modification calls.

An ``AlignmentRecord`` is built once from a pysam segment and never changed
afterwards. It carries the raw MM/ML tag values; they are only parsed when a
record that passed the read filters is decoded. Whether a record is aligned
is carried by its ``outcome``, which is either ``Mapped`` or ``Unmapped``;
unmapped records have no contig or coordinates to read by mistake.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple, Union


# Sentinels shared with the BAM format
MAPQ_UNAVAILABLE = 255
QUAL_UNAVAILABLE = 255

# pysam CIGAR operation codes
CIGAR_MATCH = 0
CIGAR_INS = 1
CIGAR_DEL = 2
CIGAR_SKIP = 3
CIGAR_SOFT_CLIP = 4
CIGAR_HARD_CLIP = 5
CIGAR_PAD = 6
CIGAR_EQUAL = 7
CIGAR_DIFF = 8

QUERY_CONSUMING = (CIGAR_MATCH, CIGAR_INS, CIGAR_SOFT_CLIP, CIGAR_EQUAL, CIGAR_DIFF)
REF_CONSUMING = (CIGAR_MATCH, CIGAR_DEL, CIGAR_SKIP, CIGAR_EQUAL, CIGAR_DIFF)


class AlignmentKind(str, Enum):
    PRIMARY_FORWARD = 'primary_forward'
    PRIMARY_REVERSE = 'primary_reverse'
    SECONDARY_FORWARD = 'secondary_forward'
    SECONDARY_REVERSE = 'secondary_reverse'
    SUPPLEMENTARY_FORWARD = 'supplementary_forward'
    SUPPLEMENTARY_REVERSE = 'supplementary_reverse'
    UNMAPPED = 'unmapped'

    @property
    def is_reverse(self) -> bool:
        return self.value.endswith('_reverse')

    @property
    def strand(self) -> str:
        if self is AlignmentKind.UNMAPPED:
            return '.'
        return '-' if self.is_reverse else '+'

    @classmethod
    def from_flags(cls, is_unmapped: bool, is_secondary: bool,
                   is_supplementary: bool, is_reverse: bool) -> 'AlignmentKind':
        if is_unmapped:
            return cls.UNMAPPED
        if is_secondary:
            prefix = 'secondary'
        elif is_supplementary:
            prefix = 'supplementary'
        else:
            prefix = 'primary'
        return cls(f"{prefix}_{'reverse' if is_reverse else 'forward'}")


@dataclass(frozen=True)
class Mapped:
    """Alignment coordinates; ``start``/``end`` are 0-based half-open reference positions."""
    contig_id: int
    contig: str
    start: int
    end: int
    cigar: Tuple[Tuple[int, int], ...]

    @property
    def align_length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class Unmapped:
    pass


AlignmentOutcome = Union[Mapped, Unmapped]


@dataclass(frozen=True)
class ModificationTagGroup:
    """
    One ``MM`` entry for a single modification code.

    ``skips[i]`` is the number of matching bases to pass over before the i-th
    call and ``probabilities[i]`` is its ``ML`` value (0-255). ``mode`` is the
    optional ``?``/``.`` suffix from the ``MM`` entry ('' when absent).
    """
    base: str
    strand: str
    code: str
    skips: Tuple[int, ...]
    probabilities: Tuple[int, ...]
    mode: str = ''

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.base, self.strand, self.code)

    @property
    def label(self) -> str:
        return f"{self.base}{self.strand}{self.code}"


@dataclass(frozen=True)
class ModCall:
    seq_pos: int
    ref_pos: Optional[int]
    prob: int
    base: str
    is_strand_plus: bool
    code: str
    base_qual: int = QUAL_UNAVAILABLE


@dataclass(frozen=True)
class AlignmentRecord:
    read_id: str
    sequence: str
    qualities: Optional[Sequence[int]]
    mapq: int
    kind: AlignmentKind
    outcome: AlignmentOutcome
    mm_tag: Optional[str] = None
    ml_tag: Optional[Sequence[int]] = None

    @property
    def seq_len(self) -> int:
        return len(self.sequence)

    @property
    def is_mapped(self) -> bool:
        return isinstance(self.outcome, Mapped)

    @property
    def strand(self) -> str:
        return self.kind.strand

    def base_qual(self, seq_pos: int) -> int:
        if self.qualities is None:
            return QUAL_UNAVAILABLE
        return self.qualities[seq_pos]

    def query_to_ref(self) -> List[Optional[int]]:
        """Reference position for every query position (``None`` for unaligned bases)."""
        if not isinstance(self.outcome, Mapped):
            return [None] * self.seq_len
        return query_to_reference(self.outcome.cigar, self.outcome.start, self.seq_len)


def query_to_reference(cigar, ref_start: int, query_length: int) -> List[Optional[int]]:
    """
    Build mapping from query position to reference position using CIGAR.

    Returns list where index is query position and value is reference position.
    None indicates an insertion or soft clip (no corresponding reference position).
    """
    ref_positions: List[Optional[int]] = []
    ref_pos = ref_start

    for op, length in cigar:
        if op in (CIGAR_MATCH, CIGAR_EQUAL, CIGAR_DIFF):
            ref_positions.extend(range(ref_pos, ref_pos + length))
            ref_pos += length
        elif op in (CIGAR_INS, CIGAR_SOFT_CLIP):
            ref_positions.extend([None] * length)
        elif op in (CIGAR_DEL, CIGAR_SKIP):
            ref_pos += length
        # H and P consume neither query nor reference

    # Tolerate CIGARs that disagree with SEQ length
    if len(ref_positions) < query_length:
        ref_positions.extend([None] * (query_length - len(ref_positions)))
    return ref_positions[:query_length]
