"""Shared argparse argument factories for the modscope CLI.

Each function adds a group of related arguments to an ArgumentParser.
``options_from_args`` turns a parsed namespace back into the keyword options
accepted by the query functions; arguments left unset are omitted.
"""

import argparse
from typing import Dict


def add_input_args(parser: argparse.ArgumentParser) -> None:
    """Add BAM positional, --url and --threads."""
    parser.add_argument('bam', help="Input BAM file or URL")
    parser.add_argument(
        '--url', dest='treat_as_url', action='store_true',
        help="Treat the input as a URL (http, https, s3, ...)"
    )
    parser.add_argument(
        '--threads', '-t', type=int, default=1,
        help="Decompression threads for the BAM reader (default: 1)"
    )


def add_read_filter_args(parser: argparse.ArgumentParser) -> None:
    """Add read-level filters (lengths, mapq, alignment type, read IDs)."""
    parser.add_argument(
        '--min-seq-len', type=int, default=None,
        help="Minimum read sequence length"
    )
    parser.add_argument(
        '--min-align-len', type=int, default=None,
        help="Minimum aligned reference length (excludes unmapped reads)"
    )
    parser.add_argument(
        '--mapq-filter', '-q', type=int, default=None,
        help="Minimum mapping quality; MAPQ 255 (unavailable) passes unless --exclude-mapq-unavail"
    )
    parser.add_argument(
        '--exclude-mapq-unavail', action='store_true',
        help="Drop reads whose MAPQ is 255 (unavailable)"
    )
    parser.add_argument(
        '--read-filter', default=None,
        help="Comma-separated alignment types to keep, e.g. primary_forward,primary_reverse"
    )
    parser.add_argument(
        '--read-ids', nargs='+', default=None, dest='read_id_set',
        help="Only keep these read IDs"
    )


def add_sampling_args(parser: argparse.ArgumentParser) -> None:
    """Add --sample-fraction and --sample-seed."""
    parser.add_argument(
        '--sample-fraction', type=float, default=None,
        help="Keep each read with this probability (0-1)"
    )
    parser.add_argument(
        '--sample-seed', type=int, default=None,
        help="Seed making --sample-fraction reproducible"
    )


def add_region_args(parser: argparse.ArgumentParser,
                    required: bool = False) -> None:
    """Add --region and, unless the region is required, --full-region."""
    parser.add_argument(
        '--region', '-r', required=required, default=None,
        help="Region contig[:start-end], 0-based half-open"
    )
    if not required:
        parser.add_argument(
            '--full-region', action='store_const', const=True, default=None,
            help="Require reads to span the whole region"
        )


def add_mod_filter_args(parser: argparse.ArgumentParser) -> None:
    """Add modification-level filters."""
    parser.add_argument(
        '--tag', default=None,
        help="Only keep this modification code (e.g. m, h, T, 76792)"
    )
    parser.add_argument(
        '--mod-strand', choices=['bc', 'bc_comp'], default=None,
        help="Keep calls on the basecalled strand (bc) or its complement (bc_comp)"
    )
    parser.add_argument(
        '--min-mod-qual', type=int, default=None,
        help="Drop calls with probability below this value (0-255)"
    )
    parser.add_argument(
        '--reject-mod-qual-non-inclusive', type=int, nargs=2, default=None,
        metavar=('LOW', 'HIGH'),
        help="Drop calls with LOW < probability < HIGH"
    )
    parser.add_argument(
        '--trim-read-ends-mod', type=int, default=None,
        help="Drop calls within this many bases of either read end"
    )
    parser.add_argument(
        '--base-qual-filter-mod', type=int, default=None,
        help="Drop calls on bases with PHRED quality below this value"
    )
    parser.add_argument(
        '--mod-region', default=None,
        help="Only keep calls whose reference position lies in this region"
    )


def add_pagination_args(parser: argparse.ArgumentParser) -> None:
    """Add --limit and --offset (counted in reads)."""
    parser.add_argument(
        '--limit', type=int, default=None,
        help="Maximum number of reads to report"
    )
    parser.add_argument(
        '--offset', type=int, default=None,
        help="Number of passing reads to skip first"
    )


def add_window_args(parser: argparse.ArgumentParser,
                    default_op: str = 'density') -> None:
    """Add --win, --step and --win-op."""
    parser.add_argument(
        '--win', type=int, required=True,
        help="Calls per window"
    )
    parser.add_argument(
        '--step', type=int, required=True,
        help="Calls the window advances by"
    )
    parser.add_argument(
        '--win-op', choices=['density', 'grad_density'], default=default_op,
        help=f"Window statistic (default: {default_op})"
    )


def add_output_args(parser: argparse.ArgumentParser,
                    help_text: str = "Output file (default: stdout)") -> None:
    """Add -o/--output argument."""
    parser.add_argument(
        '-o', '--output', default=None,
        help=help_text
    )


def add_version_args(parser: argparse.ArgumentParser) -> None:
    """Add --version flag."""
    from modscope import __version__
    parser.add_argument(
        '--version', action='version',
        version=f'%(prog)s {__version__}'
    )


QUERY_OPTION_ARGS = (
    'min_seq_len', 'min_align_len', 'read_id_set', 'threads', 'read_filter',
    'sample_fraction', 'sample_seed', 'mapq_filter', 'exclude_mapq_unavail',
    'region', 'full_region', 'tag', 'mod_strand', 'min_mod_qual',
    'reject_mod_qual_non_inclusive', 'trim_read_ends_mod',
    'base_qual_filter_mod', 'mod_region', 'limit', 'offset',
)


def options_from_args(args: argparse.Namespace) -> Dict:
    """Collect the query keyword options set on a parsed namespace."""
    options = {}
    for name in QUERY_OPTION_ARGS:
        value = getattr(args, name, None)
        if value is None or value is False:
            continue
        options[name] = value
    return options
