"""
Result shaping for the query operations.

Row builders return plain dicts/lists ready for JSON; table writers use
pandas so every TSV has a header whose column count matches its rows.
"""

from typing import Dict, List, Sequence

import pandas as pd

from modscope.analysis.decoder import ModTrack
from modscope.analysis.reconstruct import ReconstructedSequence
from modscope.analysis.windows import WindowBin
from modscope.core.records import AlignmentRecord, Mapped


WINDOW_COLUMNS = [
    '#contig', 'ref_win_start', 'ref_win_end', 'read_id', 'win_val', 'strand',
    'base', 'mod_strand', 'mod_type', 'win_start', 'win_end', 'basecall_qual',
]

SEQ_TABLE_COLUMNS = ['read_id', 'sequence', 'qualities']


def format_mod_count(tracks: List[ModTrack], threshold: int, base_qual_min: int) -> str:
    """
    e.g. ``"T+T:3;(probabilities >= 0.5020, PHRED base qual >= 0)"``, or
    ``NA`` for a read with no modification data.
    """
    if not tracks:
        return 'NA'
    counts = ''.join(f"{track.label}:{track.count_modified(threshold)};" for track in tracks)
    return f"{counts}(probabilities >= {threshold / 255:.4f}, PHRED base qual >= {base_qual_min})"


def _alignment_fields(record: AlignmentRecord) -> Dict:
    outcome = record.outcome
    if not isinstance(outcome, Mapped):
        return {}
    return {
        'start': outcome.start,
        'end': outcome.end,
        'contig': outcome.contig,
        'contig_id': outcome.contig_id,
    }


def read_info_row(record: AlignmentRecord, tracks: List[ModTrack],
                  threshold: int, base_qual_min: int) -> Dict:
    row = {'read_id': record.read_id, 'sequence_length': record.seq_len}
    outcome = record.outcome
    if isinstance(outcome, Mapped):
        row.update({
            'contig': outcome.contig,
            'reference_start': outcome.start,
            'reference_end': outcome.end,
            'alignment_length': outcome.align_length,
        })
    row['alignment_type'] = record.kind.value
    row['mod_count'] = format_mod_count(tracks, threshold, base_qual_min)
    return row


def _mod_table_entry(track: ModTrack, data: List[list]) -> Dict:
    return {
        'base': track.base,
        'is_strand_plus': track.is_strand_plus,
        'mod_code': track.code,
        'data': data,
    }


def _record_shell(record: AlignmentRecord, mod_table: List[Dict]) -> Dict:
    row = {'alignment_type': record.kind.value}
    if record.is_mapped:
        row['alignment'] = _alignment_fields(record)
    row['mod_table'] = mod_table
    row['read_id'] = record.read_id
    row['seq_len'] = record.seq_len
    return row


def bam_mods_row(record: AlignmentRecord, tracks: List[ModTrack]) -> Dict:
    """Full per-call table; data rows are ``[seq_pos, ref_pos or -1, prob]``."""
    mod_table = [
        _mod_table_entry(track, [
            [call.seq_pos, -1 if call.ref_pos is None else call.ref_pos, call.prob]
            for call in track.calls
        ])
        for track in tracks
    ]
    return _record_shell(record, mod_table)


def window_json_row(record: AlignmentRecord, windows) -> Dict:
    """Data rows are ``[win_start, win_end, ref_win_start, ref_win_end, win_val, basecall_qual]``."""
    mod_table = [
        _mod_table_entry(track, [
            [b.win_start, b.win_end, b.ref_start, b.ref_end, b.value, b.base_qual]
            for b in bins
        ])
        for track, bins in windows
    ]
    return _record_shell(record, mod_table)


def format_win_val(value: float) -> str:
    return f"{value:g}"


def window_tsv_rows(record: AlignmentRecord, windows) -> List[list]:
    outcome = record.outcome
    contig = outcome.contig if isinstance(outcome, Mapped) else '.'
    rows = []
    for track, bins in windows:
        for b in bins:
            rows.append([
                contig, b.ref_start, b.ref_end, record.read_id, format_win_val(b.value),
                record.strand, track.base, '+' if track.is_strand_plus else '-',
                track.code, b.win_start, b.win_end, b.base_qual,
            ])
    return rows


def to_tsv(rows: Sequence[Sequence], columns: List[str]) -> str:
    df = pd.DataFrame(list(rows), columns=columns, dtype=object)
    return df.to_csv(sep='\t', index=False, lineterminator='\n')


def seq_table_row(record: AlignmentRecord, rebuilt: ReconstructedSequence) -> List[str]:
    return [record.read_id, rebuilt.sequence, rebuilt.qualities_text]
