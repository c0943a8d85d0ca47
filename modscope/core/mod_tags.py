"""
MM/ML tag parsing for Mod-BAM records.

MM tag format: "C+m?,1,2,4;A-a,0;C+76792,3"
- Base, strand (+/-), one or more letter codes or a single ChEBI number,
  optional mode ('?' or '.'), then comma-separated skip counts
- A group with several letter codes ("C+mh") interleaves its ML values:
  one probability per code for each called base

ML tag: flat list of probabilities (0-255), consumed in MM order.

Skip counts index the bases that match the group's base letter in the
*original* read orientation, i.e. the reverse complement of SEQ for reverse
alignments. ``N`` matches every base.
"""

import re
from typing import List, Optional, Sequence, Tuple

import numpy as np

from modscope.core.errors import DataError
from modscope.core.records import ModificationTagGroup


_HEADER_RE = re.compile(r'^(?P<base>[ACGTUN])(?P<strand>[+-])(?P<codes>[A-Za-z]+|\d+)(?P<mode>[.?]?)$')

_COMPLEMENT = {'A': 'T', 'C': 'G', 'G': 'C', 'T': 'A', 'U': 'A', 'N': 'N'}


def split_codes(codes: str) -> List[str]:
    """'mh' -> ['m', 'h']; '76792' -> ['76792']."""
    if codes.isdigit():
        return [codes]
    return list(codes)


def parse_mm_ml(mm_tag: Optional[str], ml_tag: Optional[Sequence[int]]) -> Tuple[ModificationTagGroup, ...]:
    """
    Parse MM/ML tag values into one ModificationTagGroup per (base, strand, code).

    Args:
        mm_tag: MM tag string from BAM (None or '' when absent)
        ml_tag: ML tag values (None when absent)

    Returns:
        Tuple of groups in MM order

    Raises:
        DataError: malformed MM entry, non-integer skip count, or ML shorter
            than the calls described by MM
    """
    if not mm_tag:
        return ()

    ml_values = [] if ml_tag is None else [int(x) for x in ml_tag]
    ml_idx = 0
    groups: List[ModificationTagGroup] = []

    for mod_spec in mm_tag.split(';'):
        mod_spec = mod_spec.strip()
        if not mod_spec:
            continue

        parts = mod_spec.split(',')
        match = _HEADER_RE.match(parts[0])
        if match is None:
            raise DataError(f"Malformed MM tag entry: '{parts[0]}'")

        skips = []
        for x in parts[1:]:
            try:
                skip = int(x)
            except ValueError:
                raise DataError(f"Non-integer skip count '{x}' in MM tag entry '{parts[0]}'")
            if skip < 0:
                raise DataError(f"Negative skip count {skip} in MM tag entry '{parts[0]}'")
            skips.append(skip)

        codes = split_codes(match.group('codes'))
        n_calls = len(skips)
        ml_end = ml_idx + n_calls * len(codes)
        if ml_end > len(ml_values):
            raise DataError(
                f"ML tag has {len(ml_values)} values but MM tag needs at least {ml_end}"
            )
        ml_slice = ml_values[ml_idx:ml_end]
        ml_idx = ml_end

        for j, code in enumerate(codes):
            probs = tuple(ml_slice[j::len(codes)])
            if any(p < 0 or p > 255 for p in probs):
                raise DataError(f"ML probability out of range 0-255 for '{parts[0]}'")
            groups.append(ModificationTagGroup(
                base=match.group('base'),
                strand=match.group('strand'),
                code=code,
                skips=tuple(skips),
                probabilities=probs,
                mode=match.group('mode'),
            ))

    return tuple(groups)


def matching_positions(sequence: str, base: str, is_reverse: bool) -> np.ndarray:
    """
    Stored-orientation positions of the bases an MM group counts, in the order
    the MM skip counts walk them.
    """
    seq_bytes = np.frombuffer(sequence.upper().encode('ascii'), dtype=np.uint8)
    if base == 'N':
        positions = np.arange(len(seq_bytes))
    else:
        target = _COMPLEMENT[base] if is_reverse else base
        if target == 'U':
            target = 'T'
        positions = np.where(seq_bytes == ord(target))[0]
    if is_reverse:
        positions = positions[::-1]
    return positions


def group_positions(group: ModificationTagGroup, sequence: str, is_reverse: bool) -> np.ndarray:
    """
    Stored-orientation sequence positions of every call in ``group``.

    Raises:
        DataError: the skip counts run past the last matching base
    """
    n_calls = len(group.skips)
    if n_calls == 0:
        return np.array([], dtype=np.int64)

    base_positions = matching_positions(sequence, group.base, is_reverse)

    # Vectorized skip-count walk: base_indices[i] = sum(skips[0:i+1]) + i
    skip_arr = np.array(group.skips, dtype=np.int64)
    base_indices = np.cumsum(skip_arr) + np.arange(n_calls)

    if base_indices[-1] >= len(base_positions):
        raise DataError(
            f"MM tag {group.label} describes more {group.base} bases than the read contains "
            f"({int(base_indices[-1]) + 1} > {len(base_positions)})"
        )
    return base_positions[base_indices].astype(np.int64)
