"""
Synthetic Mod-BAM generation for fixtures and demos.

A JSON config describes random contigs and one or more groups of reads:

    {
      "seed": 42,
      "contigs": {"number": 2, "len_range": [10000, 10000]},
      "reads": [{
        "number": 1000,
        "mapq_range": [10, 20],
        "base_qual_range": [10, 20],
        "len_range": [0.1, 0.2],
        "insert_middle": "ATCG",
        "delete": [0.4, 0.5],
        "mods": [{"base": "T", "is_strand_plus": true, "mod_code": "T",
                  "win": [4, 5], "mod_range": [[0.1, 0.2], [0.3, 0.4]]}]
      }]
    }

``len_range`` and ``delete`` are fractions of the contig / read length.
Every matching base gets a call; probabilities cycle through blocks of
``win[i]`` bases drawn uniformly from ``mod_range[i]``. Reads are placed
uniformly, given a random alignment kind and written coordinate-sorted with
an index. No sequencing error is modelled.
"""

import json
import os
import uuid
from array import array
from typing import Dict, List, Optional, Tuple

import numpy as np
import pysam
from tqdm import tqdm

from modscope.core.errors import ConfigurationError
from modscope.core.mod_tags import matching_positions
from modscope.core.records import (
    CIGAR_DEL,
    CIGAR_INS,
    CIGAR_MATCH,
    MAPQ_UNAVAILABLE,
    AlignmentKind,
)


BASES = np.array(list('ACGT'))

_COMPLEMENT = str.maketrans('ACGTacgt', 'TGCAtgca')

FLAG_REVERSE = 0x10
FLAG_UNMAPPED = 0x4
FLAG_SECONDARY = 0x100
FLAG_SUPPLEMENTARY = 0x800


def reverse_complement(seq: str) -> str:
    return seq.translate(_COMPLEMENT)[::-1]


def _require(config: Dict, key: str, where: str):
    if key not in config:
        raise ConfigurationError(f"Invalid JSON config: missing '{key}' in {where}")
    return config[key]


def _range(config: Dict, key: str, where: str, cast=float) -> Tuple:
    value = _require(config, key, where)
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ConfigurationError(f"Invalid JSON config: '{key}' in {where} must be [low, high]")
    low, high = cast(value[0]), cast(value[1])
    if low > high:
        raise ConfigurationError(f"Invalid JSON config: '{key}' in {where} has low > high")
    return low, high


def parse_config(json_config: str) -> Dict:
    """Decode and check a simulation config."""
    try:
        config = json.loads(json_config)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid JSON config: {e}")
    if not isinstance(config, dict):
        raise ConfigurationError("Invalid JSON config: top level must be an object")

    contigs = _require(config, 'contigs', 'config')
    if int(_require(contigs, 'number', 'contigs')) < 1:
        raise ConfigurationError("Invalid JSON config: contigs.number must be at least 1")
    if _range(contigs, 'len_range', 'contigs', int)[0] < 1:
        raise ConfigurationError("Invalid JSON config: contig lengths must be positive")

    groups = _require(config, 'reads', 'config')
    if not isinstance(groups, list):
        raise ConfigurationError("Invalid JSON config: 'reads' must be a list")
    for i, group in enumerate(groups):
        where = f"reads[{i}]"
        _require(group, 'number', where)
        _range(group, 'mapq_range', where, int)
        _range(group, 'base_qual_range', where, int)
        low, high = _range(group, 'len_range', where)
        if low < 0 or high > 1:
            raise ConfigurationError(f"Invalid JSON config: len_range in {where} must lie in [0, 1]")
        for mod in group.get('mods', []):
            mwhere = f"{where}.mods"
            if _require(mod, 'base', mwhere) not in 'ACGTN' or len(mod['base']) != 1:
                raise ConfigurationError(f"Invalid JSON config: bad base '{mod['base']}' in {mwhere}")
            _require(mod, 'is_strand_plus', mwhere)
            _require(mod, 'mod_code', mwhere)
            wins = _require(mod, 'win', mwhere)
            ranges = _require(mod, 'mod_range', mwhere)
            if not wins or len(wins) != len(ranges) or any(int(w) < 1 for w in wins):
                raise ConfigurationError(
                    f"Invalid JSON config: 'win' and 'mod_range' in {mwhere} must be equal-length, positive"
                )
    return config


def make_contigs(rng: np.random.Generator, number: int, len_range: Tuple[int, int]) -> Dict[str, str]:
    contigs = {}
    for i in range(number):
        length = int(rng.integers(len_range[0], len_range[1] + 1))
        contigs[f"contig_{i:05d}"] = ''.join(rng.choice(BASES, size=length))
    return contigs


def write_fasta(contigs: Dict[str, str], fasta_path: str, width: int = 80):
    with open(fasta_path, 'w') as fh:
        for name, seq in contigs.items():
            fh.write(f">{name}\n")
            for i in range(0, len(seq), width):
                fh.write(seq[i:i + width] + '\n')


def build_alignment(ref_seq: str, start: int, length: int,
                    delete: Optional[Tuple[int, int]],
                    insert: str) -> Tuple[str, List[Tuple[int, int]]]:
    """
    Read sequence (reference orientation) and CIGAR for ``ref_seq[start:start+length]``
    with an optional deletion (read-relative [d0, d1)) and a middle insertion.
    """
    segment = ref_seq[start:start + length]
    if delete is not None and 0 < delete[0] < delete[1] < length:
        d0, d1 = delete
        seq = segment[:d0] + segment[d1:]
        cigar = [(CIGAR_MATCH, d0), (CIGAR_DEL, d1 - d0), (CIGAR_MATCH, length - d1)]
    else:
        seq = segment
        cigar = [(CIGAR_MATCH, length)]

    if insert:
        mid = len(seq) // 2
        seq = seq[:mid] + insert.upper() + seq[mid:]
        split = []
        q = 0
        placed = False
        for op, n in cigar:
            if not placed and op == CIGAR_MATCH and q <= mid <= q + n:
                left, right = mid - q, n - (mid - q)
                if left:
                    split.append((op, left))
                split.append((CIGAR_INS, len(insert)))
                if right:
                    split.append((op, right))
                placed = True
            else:
                split.append((op, n))
            if op == CIGAR_MATCH:
                q += n
        cigar = split
    return seq, cigar


def make_mod_tags(rng: np.random.Generator, seq: str, is_reverse: bool,
                  mods: List[Dict]) -> Tuple[str, List[int]]:
    """MM string and ML values calling every matching base of each configured mod."""
    mm_parts = []
    ml: List[int] = []
    for mod in mods:
        positions = matching_positions(seq, mod['base'], is_reverse)
        wins = [int(w) for w in mod['win']]
        ranges = mod['mod_range']
        probs = []
        block = 0
        while len(probs) < len(positions):
            low, high = ranges[block % len(ranges)]
            n = min(wins[block % len(wins)], len(positions) - len(probs))
            draws = rng.uniform(low, high, size=n)
            probs.extend(int(min(255, max(0, round(p * 255)))) for p in draws)
            block += 1
        strand = '+' if mod['is_strand_plus'] else '-'
        skips = ''.join(',0' for _ in positions)
        mm_parts.append(f"{mod['base']}{strand}{mod['mod_code']}?{skips};")
        ml.extend(probs)
    return ''.join(mm_parts), ml


def _flag_for(kind: AlignmentKind) -> int:
    if kind is AlignmentKind.UNMAPPED:
        return FLAG_UNMAPPED
    flag = FLAG_REVERSE if kind.is_reverse else 0
    if kind.value.startswith('secondary'):
        flag |= FLAG_SECONDARY
    elif kind.value.startswith('supplementary'):
        flag |= FLAG_SUPPLEMENTARY
    return flag


def _sort_and_index_bam(unsorted_bam: str, bam_path: str, verbose: bool = False):
    if verbose:
        print(f"  Sorting and indexing {bam_path}...")
    pysam.sort("-o", bam_path, unsorted_bam)
    os.remove(unsorted_bam)
    pysam.index(bam_path)


def simulate_mod_bam(json_config: str, bam_path: str, fasta_path: str,
                     progress: bool = False) -> None:
    """
    Write a random reference FASTA and a sorted, indexed Mod-BAM aligned to it.

    Args:
        json_config: Simulation config as a JSON string
        bam_path: Output BAM path (``.bai`` written alongside)
        fasta_path: Output FASTA path
        progress: Show a tqdm progress bar

    Raises:
        ConfigurationError: malformed JSON or config values
    """
    config = parse_config(json_config)
    rng = np.random.default_rng(config.get('seed'))

    contigs = make_contigs(rng, int(config['contigs']['number']),
                           tuple(int(x) for x in config['contigs']['len_range']))
    write_fasta(contigs, fasta_path)

    names = list(contigs)
    header = {
        'HD': {'VN': '1.6', 'SO': 'unsorted'},
        'SQ': [{'SN': name, 'LN': len(seq)} for name, seq in contigs.items()],
    }
    kinds = list(AlignmentKind)

    unsorted_bam = bam_path + '.unsorted.bam'
    total = sum(int(group['number']) for group in config['reads'])
    with pysam.AlignmentFile(unsorted_bam, "wb", header=header) as outbam, \
            tqdm(total=total, desc="Simulating reads", disable=not progress) as pbar:
        for group_idx, group in enumerate(config['reads']):
            mapq_low, mapq_high = (int(x) for x in group['mapq_range'])
            qual_low, qual_high = (int(x) for x in group['base_qual_range'])
            len_low, len_high = (float(x) for x in group['len_range'])
            insert = group.get('insert_middle') or ''
            delete_frac = group.get('delete')
            mods = group.get('mods', [])

            for _ in range(int(group['number'])):
                ref_idx = int(rng.integers(len(names)))
                ref_seq = contigs[names[ref_idx]]
                length = max(1, int(round(rng.uniform(len_low, len_high) * len(ref_seq))))
                length = min(length, len(ref_seq))
                start = int(rng.integers(0, len(ref_seq) - length + 1))

                delete = None
                if delete_frac:
                    delete = (int(delete_frac[0] * length), int(delete_frac[1] * length))
                seq, cigar = build_alignment(ref_seq, start, length, delete, insert)

                kind = kinds[int(rng.integers(len(kinds)))]
                read = pysam.AlignedSegment(outbam.header)
                read.query_name = f"{group_idx}.{uuid.UUID(bytes=rng.bytes(16), version=4)}"
                read.flag = _flag_for(kind)
                if kind is AlignmentKind.UNMAPPED:
                    read.reference_id = -1
                    read.reference_start = -1
                    read.mapping_quality = MAPQ_UNAVAILABLE
                else:
                    read.reference_id = ref_idx
                    read.reference_start = start
                    read.mapping_quality = int(rng.integers(mapq_low, mapq_high + 1))
                    read.cigartuples = cigar
                read.query_sequence = seq
                read.query_qualities = array('B', rng.integers(qual_low, qual_high + 1, size=len(seq)).tolist())

                mm, ml = make_mod_tags(rng, seq, kind.is_reverse, mods)
                if mm:
                    read.set_tag('MM', mm, value_type='Z')
                    if ml:
                        read.set_tag('ML', array('B', ml))
                outbam.write(read)
                pbar.update(1)

    _sort_and_index_bam(unsorted_bam, bam_path, verbose=progress)
