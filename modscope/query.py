"""
Query operations over a Mod-BAM file.

Every query follows the same lazy pipeline:

    BamSource.iterate -> filter_records -> paginate -> decode_record -> rows

Options are validated into a FilterSpec, the file is opened and regions are
checked against the header before the first record is read. Rows are
collected into a list, so an error part way through never leaks a partial
result.
"""

from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

from modscope.analysis.decoder import decode_record, modified_positions
from modscope.analysis.filters import filter_records
from modscope.analysis.paginate import paginate
from modscope.analysis.reconstruct import reconstruct
from modscope.analysis.windows import window_record
from modscope.core.bam_reader import BamSource
from modscope.core.errors import ConfigurationError
from modscope.core.filter_spec import FilterSpec, WindowSpec
from modscope.core.records import AlignmentRecord
from modscope.core.region import parse_region
from modscope.output import (
    SEQ_TABLE_COLUMNS,
    WINDOW_COLUMNS,
    bam_mods_row,
    read_info_row,
    seq_table_row,
    to_tsv,
    window_json_row,
    window_tsv_rows,
)
from modscope.simulate import simulate_mod_bam  # noqa: F401  (re-exported)


# Records scanned by peek for modification types
PEEK_SAMPLE_SIZE = 100


def peek(bam_path: str, treat_as_url: bool = False) -> Dict:
    """
    Contigs and modification types of a BAM without per-read work.

    Returns:
        {'contigs': {name: length}, 'modifications': [[base, strand, code], ...]}
    """
    with BamSource(bam_path, treat_as_url=treat_as_url) as source:
        contigs = source.list_contigs()
        mods = source.list_modification_tag_groups(n_sample=PEEK_SAMPLE_SIZE)
    return {'contigs': contigs, 'modifications': [list(m) for m in mods]}


def _resolve_regions(source: BamSource, spec: FilterSpec) -> FilterSpec:
    contigs = source.list_contigs()
    changes = {}
    if spec.region is not None:
        changes['region'] = spec.region.resolve(contigs)
    if spec.mod_region is not None:
        changes['mod_region'] = spec.mod_region.resolve(contigs)
    return replace(spec, **changes) if changes else spec


def _collect(bam_path: str, treat_as_url: bool, spec: FilterSpec,
             rows_for: Callable[[AlignmentRecord, FilterSpec], Iterable]) -> List:
    """Run the read pipeline and gather every output row."""
    with BamSource(bam_path, treat_as_url=treat_as_url, threads=spec.threads) as source:
        spec = _resolve_regions(source, spec)
        if spec.region is not None:
            source.check_index()

        records = source.iterate(spec.region)
        records = filter_records(records, spec)
        records = paginate(records, spec.offset, spec.limit)

        results = []
        for record in records:
            results.extend(rows_for(record, spec))
    return results


def read_info(bam_path: str, treat_as_url: bool = False, **options) -> List[Dict]:
    """One summary row per passing read, with modified-call counts per tag group."""
    spec = FilterSpec.from_options(**options)

    def rows_for(record, spec):
        tracks = decode_record(record, spec)
        return [read_info_row(record, tracks, spec.mod_threshold, spec.base_qual_filter_mod)]

    return _collect(bam_path, treat_as_url, spec, rows_for)


def bam_mods(bam_path: str, treat_as_url: bool = False, **options) -> List[Dict]:
    """One row per passing read with every retained modification call."""
    spec = FilterSpec.from_options(**options)

    def rows_for(record, spec):
        return [bam_mods_row(record, decode_record(record, spec))]

    return _collect(bam_path, treat_as_url, spec, rows_for)


def window_reads(bam_path: str, win: int, step: int, win_op: Optional[str] = None,
                 output: str = 'tsv', treat_as_url: bool = False, **options):
    """
    Windowed modification densities.

    Args:
        bam_path: BAM path or URL
        win: Calls per window
        step: Calls the window advances by
        win_op: 'density' (default) or 'grad_density'
        output: 'tsv' for a table string, 'json' for bam_mods-shaped records
        **options: FilterSpec options; limit/offset count reads, not windows

    Returns:
        TSV string or list of dicts
    """
    window_spec = WindowSpec.from_options(win, step, win_op)
    if output not in ('tsv', 'json'):
        raise ConfigurationError("output must be 'tsv' or 'json'")
    spec = FilterSpec.from_options(**options)

    def rows_for(record, spec):
        windows = window_record(decode_record(record, spec), window_spec, spec.mod_threshold)
        if output == 'json':
            return [window_json_row(record, windows)]
        return window_tsv_rows(record, windows)

    rows = _collect(bam_path, treat_as_url, spec, rows_for)
    if output == 'json':
        return rows
    return to_tsv(rows, WINDOW_COLUMNS)


def seq_table(bam_path: str, region: str, treat_as_url: bool = False, **options) -> str:
    """
    Reads spanning ``region`` rebuilt base by base against the reference.

    ``full_region`` is always on and ``mod_region`` always equals ``region``;
    contradicting either is a ConfigurationError. Row order is not stable
    across calls; compare results as sets.
    """
    if region is None:
        raise ConfigurationError("seq_table requires a region")
    if options.get('full_region') is False:
        raise ConfigurationError("seq_table requires full_region to be true when it is set")
    target = parse_region(region)
    mod_region = options.get('mod_region')
    if mod_region is not None and parse_region(mod_region) != target:
        raise ConfigurationError("seq_table requires mod_region to match region when it is set")

    options.update(region=region, full_region=True, mod_region=region)
    spec = FilterSpec.from_options(**options)

    def rows_for(record, spec):
        tracks = decode_record(record, spec)
        rebuilt = reconstruct(record, spec.region, modified_positions(tracks, spec.mod_threshold))
        return [seq_table_row(record, rebuilt)]

    return to_tsv(_collect(bam_path, treat_as_url, spec, rows_for), SEQ_TABLE_COLUMNS)
