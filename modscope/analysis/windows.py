"""
Sliding windows over decoded modification calls.

For each ModTrack a window covers ``win`` consecutive calls and advances by
``step`` calls. A track with fewer than ``win`` calls yields no windows.
"""

from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from modscope.analysis.decoder import ModTrack
from modscope.core.filter_spec import WindowSpec
from modscope.core.records import QUAL_UNAVAILABLE


@dataclass(frozen=True)
class WindowBin:
    """
    One window. ``win_start``/``win_end`` are read positions (half-open);
    ``ref_start``/``ref_end`` span the reference positions of its calls, or
    -1/-1 when none of them is aligned.
    """
    win_start: int
    win_end: int
    ref_start: int
    ref_end: int
    value: float
    base_qual: int


def window_densities(probs: np.ndarray, win: int, step: int, threshold: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Fraction of calls at or above ``threshold`` in every window.

    Returns:
        (window start indices into the call list, densities)
    """
    n = len(probs)
    if n < win:
        return np.array([], dtype=np.int64), np.array([], dtype=np.float64)
    starts = np.arange(0, n - win + 1, step, dtype=np.int64)
    hits = np.concatenate([[0], np.cumsum(probs >= threshold)])
    densities = (hits[starts + win] - hits[starts]) / float(win)
    return starts, densities


def window_track(track: ModTrack, spec: WindowSpec, threshold: int) -> List[WindowBin]:
    """Windows for one track; ``grad_density`` differences consecutive densities starting from 0."""
    calls = track.calls
    probs = np.array([c.prob for c in calls], dtype=np.int64)
    starts, values = window_densities(probs, spec.win, spec.step, threshold)
    if len(starts) == 0:
        return []

    if spec.win_op == 'grad_density':
        values = np.diff(values, prepend=0.0)

    seq_pos = np.array([c.seq_pos for c in calls], dtype=np.int64)
    ref_pos = np.array([-1 if c.ref_pos is None else c.ref_pos for c in calls], dtype=np.int64)
    quals = np.array([c.base_qual for c in calls], dtype=np.int64)

    bins = []
    for start, value in zip(starts, values):
        end = start + spec.win
        refs = ref_pos[start:end]
        refs = refs[refs >= 0]
        if len(refs):
            ref_start, ref_end = int(refs.min()), int(refs.max()) + 1
        else:
            ref_start, ref_end = -1, -1

        win_quals = quals[start:end]
        if np.any(win_quals == QUAL_UNAVAILABLE):
            base_qual = QUAL_UNAVAILABLE
        else:
            base_qual = int(round(float(win_quals.mean())))

        bins.append(WindowBin(
            win_start=int(seq_pos[start]),
            win_end=int(seq_pos[end - 1]) + 1,
            ref_start=ref_start,
            ref_end=ref_end,
            value=float(value),
            base_qual=base_qual,
        ))
    return bins


def window_record(tracks: List[ModTrack], spec: WindowSpec,
                  threshold: int) -> List[Tuple[ModTrack, List[WindowBin]]]:
    return [(track, window_track(track, spec, threshold)) for track in tracks]
