#!/usr/bin/env python3
"""
modscope: inspect and summarise Mod-BAM modification calls.

Usage:
    modscope peek reads.bam
    modscope read-info reads.bam --region chr1:0-5000 --min-seq-len 1000
    modscope bam-mods reads.bam --tag m --min-mod-qual 128 --limit 10
    modscope window-reads reads.bam --win 10 --step 5 --win-op grad_density
    modscope seq-table reads.bam --region chr1:100-200
    modscope simulate config.json -o sim.bam --fasta sim.fa
"""

import argparse
import json
import sys

from modscope.cli.common import (
    add_input_args,
    add_mod_filter_args,
    add_output_args,
    add_pagination_args,
    add_read_filter_args,
    add_region_args,
    add_sampling_args,
    add_version_args,
    add_window_args,
    options_from_args,
)
from modscope.core.errors import ConfigurationError, DataError, NotFoundError
from modscope.query import bam_mods, peek, read_info, seq_table, window_reads
from modscope.simulate import simulate_mod_bam


def _emit(text: str, output: str = None):
    if output is None:
        sys.stdout.write(text)
        if not text.endswith('\n'):
            sys.stdout.write('\n')
        return
    with open(output, 'w') as fh:
        fh.write(text)
    print(f"Wrote {output}", file=sys.stderr)


def _emit_json(obj, output: str = None):
    _emit(json.dumps(obj, indent=2), output)


# =============================================================================
# subcommands
# =============================================================================

def cmd_peek(args):
    _emit_json(peek(args.bam, treat_as_url=args.treat_as_url), args.output)


def cmd_read_info(args):
    rows = read_info(args.bam, treat_as_url=args.treat_as_url, **options_from_args(args))
    print(f"{len(rows)} reads passed filters", file=sys.stderr)
    _emit_json(rows, args.output)


def cmd_bam_mods(args):
    rows = bam_mods(args.bam, treat_as_url=args.treat_as_url, **options_from_args(args))
    print(f"{len(rows)} reads passed filters", file=sys.stderr)
    _emit_json(rows, args.output)


def cmd_window_reads(args):
    result = window_reads(
        args.bam, args.win, args.step, win_op=args.win_op,
        output='json' if args.json else 'tsv',
        treat_as_url=args.treat_as_url, **options_from_args(args)
    )
    if args.json:
        _emit_json(result, args.output)
    else:
        _emit(result, args.output)


def cmd_seq_table(args):
    options = options_from_args(args)
    region = options.pop('region')
    _emit(seq_table(args.bam, region, treat_as_url=args.treat_as_url, **options), args.output)


def cmd_simulate(args):
    with open(args.config) as fh:
        json_config = fh.read()
    print(f"Simulating from {args.config}...", file=sys.stderr)
    simulate_mod_bam(json_config, args.output, args.fasta, progress=not args.quiet)
    print(f"Wrote {args.output}, {args.output}.bai and {args.fasta}", file=sys.stderr)


COMMANDS = {
    'peek': cmd_peek,
    'read-info': cmd_read_info,
    'bam-mods': cmd_bam_mods,
    'window-reads': cmd_window_reads,
    'seq-table': cmd_seq_table,
    'simulate': cmd_simulate,
}


def _add_query_args(parser, region_required: bool = False):
    add_input_args(parser)
    add_read_filter_args(parser)
    add_sampling_args(parser)
    add_region_args(parser, required=region_required)
    add_mod_filter_args(parser)
    add_pagination_args(parser)
    add_output_args(parser)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='modscope',
        description='Filter, decode and window Mod-BAM modification calls',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Subcommands:
  peek          List contigs and modification types
  read-info     One summary row per read (JSON)
  bam-mods      Every modification call per read (JSON)
  window-reads  Windowed modification density (TSV or JSON)
  seq-table     Reads rebuilt over a region (TSV)
  simulate      Write a synthetic Mod-BAM and reference FASTA
        """
    )
    add_version_args(parser)
    subparsers = parser.add_subparsers(dest='command')

    # --- peek ---
    p_peek = subparsers.add_parser(
        'peek', help='List contigs and modification types',
        description='Read the BAM header and the first records to list contigs and modifications.'
    )
    p_peek.add_argument('bam', help='Input BAM file or URL')
    p_peek.add_argument('--url', dest='treat_as_url', action='store_true',
                        help='Treat the input as a URL')
    add_output_args(p_peek)

    # --- read-info ---
    p_info = subparsers.add_parser(
        'read-info', help='Per-read summary',
        description='Report length, alignment and modification counts for each passing read.'
    )
    _add_query_args(p_info)

    # --- bam-mods ---
    p_mods = subparsers.add_parser(
        'bam-mods', help='Per-read modification calls',
        description='Report every retained modification call for each passing read.'
    )
    _add_query_args(p_mods)

    # --- window-reads ---
    p_win = subparsers.add_parser(
        'window-reads', help='Windowed modification density',
        description='Slide windows over each read\'s calls and report density or its gradient.'
    )
    _add_query_args(p_win)
    add_window_args(p_win)
    p_win.add_argument('--json', action='store_true',
                       help='Emit JSON records instead of TSV')

    # --- seq-table ---
    p_seq = subparsers.add_parser(
        'seq-table', help='Reads rebuilt over a region',
        description='Rebuild each read spanning the region, marking indels and modified bases.'
    )
    _add_query_args(p_seq, region_required=True)

    # --- simulate ---
    p_sim = subparsers.add_parser(
        'simulate', help='Write a synthetic Mod-BAM',
        description='Generate a random reference and a sorted, indexed Mod-BAM from a JSON config.'
    )
    p_sim.add_argument('config', help='Simulation config (.json)')
    p_sim.add_argument('-o', '--output', required=True, help='Output BAM')
    p_sim.add_argument('--fasta', required=True, help='Output reference FASTA')
    p_sim.add_argument('--quiet', action='store_true', help='Hide the progress bar')

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        COMMANDS[args.command](args)
    except (ConfigurationError, NotFoundError, DataError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
