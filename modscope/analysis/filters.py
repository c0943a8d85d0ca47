"""
Read-level filtering and subsampling.

``accepts`` is the pure AND of every read-level predicate in a FilterSpec.
Sampling is kept apart from it because the unseeded mode draws from a random
source; ``filter_records`` composes both into a lazy stream.
"""

import hashlib
from typing import Iterable, Iterator, Optional

import numpy as np

from modscope.core.filter_spec import FilterSpec
from modscope.core.records import MAPQ_UNAVAILABLE, AlignmentRecord, Mapped


def stable_unit_hash(read_id: str, seed: int) -> float:
    """Map (read_id, seed) to a float in [0, 1) that is stable across runs and platforms."""
    digest = hashlib.blake2b(f"{seed}:{read_id}".encode('utf-8'), digest_size=8).digest()
    return int.from_bytes(digest, 'big') / float(1 << 64)


def accepts(record: AlignmentRecord, spec: FilterSpec) -> bool:
    """Whether a record passes every read-level constraint (sampling excluded)."""
    if record.seq_len == 0:
        return False
    if spec.min_seq_len is not None and record.seq_len < spec.min_seq_len:
        return False

    outcome = record.outcome
    mapped = isinstance(outcome, Mapped)

    if spec.min_align_len is not None:
        if not mapped or outcome.align_length < spec.min_align_len:
            return False

    if record.mapq == MAPQ_UNAVAILABLE:
        if spec.exclude_mapq_unavail:
            return False
    elif spec.mapq_filter is not None and record.mapq < spec.mapq_filter:
        return False

    if spec.read_filter is not None and record.kind not in spec.read_filter:
        return False

    if spec.read_id_set is not None and record.read_id not in spec.read_id_set:
        return False

    if spec.region is not None:
        if not mapped:
            return False
        if spec.full_region:
            if not spec.region.is_contained_by(outcome.contig, outcome.start, outcome.end):
                return False
        elif not spec.region.overlaps(outcome.contig, outcome.start, outcome.end):
            return False

    return True


def sample_reads(records: Iterable[AlignmentRecord], spec: FilterSpec,
                 rng: Optional[np.random.Generator] = None) -> Iterator[AlignmentRecord]:
    """
    Bernoulli subsampling at ``spec.sample_fraction``.

    With a seed the decision depends only on (read_id, seed, fraction), so a
    repeated query keeps the same reads whatever the pagination.
    """
    fraction = spec.sample_fraction
    if fraction is None or fraction >= 1.0:
        yield from records
        return
    if fraction <= 0.0:
        return

    if spec.sample_seed is None and rng is None:
        rng = np.random.default_rng()

    for record in records:
        if spec.sample_seed is not None:
            keep = stable_unit_hash(record.read_id, spec.sample_seed) < fraction
        else:
            keep = rng.random() < fraction
        if keep:
            yield record


def filter_records(records: Iterable[AlignmentRecord], spec: FilterSpec,
                   rng: Optional[np.random.Generator] = None) -> Iterator[AlignmentRecord]:
    """Lazily apply read-level filters and then sampling."""
    passing = (record for record in records if accepts(record, spec))
    return sample_reads(passing, spec, rng=rng)
