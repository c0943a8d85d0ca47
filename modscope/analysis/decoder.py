"""
Modification decoding.

Expands the MM/ML tag groups of one record into per-base ``ModCall``s and
applies the modification-level constraints of a FilterSpec (tag, strand,
probability, trimming, base quality, mod_region). Calls are grouped into one
``ModTrack`` per (base, strand, code), in order of first appearance in MM.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from modscope.core.filter_spec import FilterSpec
from modscope.core.mod_tags import group_positions, parse_mm_ml
from modscope.core.records import (
    QUAL_UNAVAILABLE,
    AlignmentRecord,
    Mapped,
    ModCall,
    ModificationTagGroup,
)


@dataclass
class ModTrack:
    """Retained calls for one (base, strand, code), sorted by sequence position."""
    base: str
    is_strand_plus: bool
    code: str
    calls: List[ModCall] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.base}{'+' if self.is_strand_plus else '-'}{self.code}"

    def count_modified(self, threshold: int) -> int:
        return sum(1 for call in self.calls if call.prob >= threshold)


def _group_selected(group: ModificationTagGroup, spec: FilterSpec) -> bool:
    if spec.tag is not None and group.code != spec.tag:
        return False
    strand = spec.mod_strand_symbol
    if strand is not None and group.strand != strand:
        return False
    return True


def _call_mask(seq_pos: np.ndarray, probs: np.ndarray, quals: np.ndarray,
               ref_pos: np.ndarray, seq_len: int, contig: Optional[str],
               spec: FilterSpec) -> np.ndarray:
    """Boolean mask of calls passing the per-call constraints."""
    keep = probs >= spec.min_mod_qual

    if spec.reject_range is not None:
        low, high = spec.reject_range
        keep &= ~((probs > low) & (probs < high))

    if spec.trim_read_ends_mod > 0:
        trim = spec.trim_read_ends_mod
        keep &= (seq_pos >= trim) & (seq_pos < seq_len - trim)

    if spec.base_qual_filter_mod > 0:
        keep &= quals >= spec.base_qual_filter_mod

    if spec.mod_region is not None:
        region = spec.mod_region
        if contig != region.contig:
            keep[:] = False
        else:
            keep &= ref_pos >= 0
            keep &= ref_pos >= region.start
            if region.end is not None:
                keep &= ref_pos < region.end

    return keep


def decode_record(record: AlignmentRecord, spec: FilterSpec) -> List[ModTrack]:
    """
    Decode and filter all modification calls of a record.

    Args:
        record: Alignment record carrying raw MM/ML tags
        spec: Query constraints

    Returns:
        ModTracks ordered by first appearance in MM. A track is present for
        every selected tag group even when all its calls are filtered out.

    Raises:
        DataError: malformed MM/ML tags, or skip counts that run past the
            read's matching bases
    """
    groups = parse_mm_ml(record.mm_tag, record.ml_tag)
    if not groups:
        return []

    is_reverse = record.kind.is_reverse
    outcome = record.outcome
    contig = outcome.contig if isinstance(outcome, Mapped) else None

    ref_table = np.array(
        [-1 if r is None else r for r in record.query_to_ref()], dtype=np.int64
    )
    if record.qualities is None:
        qual_table = np.full(record.seq_len, QUAL_UNAVAILABLE, dtype=np.int64)
    else:
        qual_table = np.array(record.qualities, dtype=np.int64)

    tracks: Dict[Tuple[str, str, str], ModTrack] = {}
    for group in groups:
        if not _group_selected(group, spec):
            continue

        positions = group_positions(group, record.sequence, is_reverse)
        probs = np.array(group.probabilities, dtype=np.int64)
        ref_pos = ref_table[positions] if len(positions) else np.array([], dtype=np.int64)
        quals = qual_table[positions] if len(positions) else np.array([], dtype=np.int64)

        keep = _call_mask(positions, probs, quals, ref_pos, record.seq_len, contig, spec)

        track = tracks.get(group.key)
        if track is None:
            track = ModTrack(group.base, group.strand == '+', group.code)
            tracks[group.key] = track

        for i in np.flatnonzero(keep):
            track.calls.append(ModCall(
                seq_pos=int(positions[i]),
                ref_pos=None if ref_pos[i] < 0 else int(ref_pos[i]),
                prob=int(probs[i]),
                base=group.base,
                is_strand_plus=track.is_strand_plus,
                code=group.code,
                base_qual=int(quals[i]),
            ))

    for track in tracks.values():
        track.calls.sort(key=lambda call: call.seq_pos)
    return list(tracks.values())


def modified_positions(tracks: List[ModTrack], threshold: int) -> set:
    """Sequence positions carrying at least one retained call at or above ``threshold``."""
    return {
        call.seq_pos
        for track in tracks
        for call in track.calls
        if call.prob >= threshold
    }
