"""
Shared pytest fixtures for modscope tests.
"""
import json
import os
import tempfile
from array import array

import pysam
import pytest

from modscope.core.records import AlignmentKind, AlignmentRecord, Mapped, Unmapped


EXAMPLE_READ_ID = '5d10eb9a-aae1-4db8-8ec6-7ebb34d32575'
REVERSE_READ_ID = 'a4f36092-b4d5-47a9-813e-c22c3b477a0c'
INDEL_READ_ID = '0c8f5a1e-3b7d-4e62-9f0a-2d6c1b8e7a54'
UNMAPPED_READ_ID = 'fffffff1-10d2-49cb-8ca3-e8d48979001b'

EXAMPLE_CONTIGS = {'dummyI': 22, 'dummyII': 48, 'dummyIII': 76}


@pytest.fixture
def temp_dir():
    """Temporary directory for file operations."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


def _segment(header, name, flag, tid, start, mapq, cigar, seq, quals, mm, ml):
    read = pysam.AlignedSegment(header)
    read.query_name = name
    read.flag = flag
    read.reference_id = tid
    read.reference_start = start
    read.mapping_quality = mapq
    if cigar is not None:
        read.cigartuples = cigar
    read.query_sequence = seq
    if quals is not None:
        read.query_qualities = pysam.qualitystring_to_array(''.join(chr(q + 33) for q in quals))
    read.set_tag('MM', mm, value_type='Z')
    read.set_tag('ML', array('B', ml))
    return read


def write_example_bam(path):
    """
    Small indexed BAM with four reads:

    - dummyI:9-17, forward, no base qualities, T+T calls at 0, 3, 4, 7
      (probabilities 4, 7, 9, 6)
    - dummyII:3-15, reverse, MAPQ 255, G-7200 calls at read positions 2 and 11
    - dummyIII:20-33, forward, CIGAR 4M2I3M2D4M, T+T calls at 3 (250) and 9 (10)
    - unmapped, T+T calls at 0 and 2
    """
    header = {
        'HD': {'VN': '1.6', 'SO': 'coordinate'},
        'SQ': [{'SN': name, 'LN': length} for name, length in EXAMPLE_CONTIGS.items()],
    }
    with pysam.AlignmentFile(path, "wb", header=header) as out:
        h = out.header
        out.write(_segment(h, EXAMPLE_READ_ID, 0, 0, 9, 20, [(0, 8)],
                           'TCGTTCGT', None, 'T+T?,0,0,0,0;', [4, 7, 9, 6]))
        out.write(_segment(h, REVERSE_READ_ID, 16, 1, 3, 255, [(0, 12)],
                           'AACCGGTTAACC', [25] * 12, 'G-7200,0,2;', [200, 100]))
        out.write(_segment(h, INDEL_READ_ID, 0, 2, 20, 40,
                           [(0, 4), (1, 2), (0, 3), (2, 2), (0, 4)],
                           'ACGTGACCATGCA', [30] * 4 + [20, 20] + [30] * 7,
                           'T+T,0,0;', [250, 10]))
        out.write(_segment(h, UNMAPPED_READ_ID, 4, -1, -1, 255, None,
                           'TTTT', [15] * 4, 'T+T,0,1;', [240, 30]))
    pysam.index(path)
    return path


@pytest.fixture
def example_bam(temp_dir):
    """Hand-written Mod-BAM with exact, known calls."""
    return write_example_bam(os.path.join(temp_dir, 'example_1.bam'))


SIMPLE_CONFIG = {
    'seed': 7,
    'contigs': {'number': 2, 'len_range': [10000, 10000]},
    'reads': [{
        'number': 300,
        'mapq_range': [10, 20],
        'base_qual_range': [10, 20],
        'len_range': [0.1, 0.2],
        'mods': [{'base': 'T', 'is_strand_plus': True, 'mod_code': 'T',
                  'win': [4, 5], 'mod_range': [[0.1, 0.2], [0.3, 0.4]]}],
    }],
}

TWO_MODS_CONFIG = {
    'seed': 11,
    'contigs': {'number': 2, 'len_range': [5000, 5000]},
    'reads': [{
        'number': 120,
        'mapq_range': [10, 60],
        'base_qual_range': [10, 40],
        'len_range': [0.05, 0.1],
        'mods': [
            {'base': 'T', 'is_strand_plus': True, 'mod_code': 'T',
             'win': [3], 'mod_range': [[0.6, 0.9]]},
            {'base': 'C', 'is_strand_plus': True, 'mod_code': 'm',
             'win': [2, 2], 'mod_range': [[0.05, 0.2], [0.7, 1.0]]},
        ],
    }],
}

INDEL_CONFIG = {
    'seed': 3,
    'contigs': {'number': 1, 'len_range': [10000, 10000]},
    'reads': [{
        'number': 200,
        'mapq_range': [255, 255],
        'base_qual_range': [20, 30],
        'len_range': [0.5, 0.5],
        'insert_middle': 'ATCG',
        'mods': [],
    }],
}


def _simulate(tmp_path_factory, name, config):
    from modscope.simulate import simulate_mod_bam

    base = tmp_path_factory.mktemp(name)
    bam_path = str(base / f'{name}.bam')
    fasta_path = str(base / f'{name}.fasta')
    simulate_mod_bam(json.dumps(config), bam_path, fasta_path)
    return bam_path


@pytest.fixture(scope='session')
def simple_bam(tmp_path_factory):
    """Simulated BAM: 2 x 10 kb contigs, 300 reads, T+T calls, all alignment kinds."""
    return _simulate(tmp_path_factory, 'simple_bam', SIMPLE_CONFIG)


@pytest.fixture(scope='session')
def two_mods_bam(tmp_path_factory):
    """Simulated BAM carrying T+T and C+m calls on every read."""
    return _simulate(tmp_path_factory, 'two_mods_bam', TWO_MODS_CONFIG)


@pytest.fixture(scope='session')
def indel_bam(tmp_path_factory):
    """Simulated BAM with MAPQ 255 and a 4 bp insertion in the middle of every read."""
    return _simulate(tmp_path_factory, 'indel_bam', INDEL_CONFIG)


@pytest.fixture
def make_record():
    """Factory for AlignmentRecords built without a BAM file."""
    def _make(read_id='read1', sequence='ACGTACGTAC', qualities=None, mapq=30,
              kind=AlignmentKind.PRIMARY_FORWARD, contig='chr1', start=100,
              cigar=None, mm=None, ml=None):
        if kind is AlignmentKind.UNMAPPED:
            outcome = Unmapped()
        else:
            cigar = tuple(cigar) if cigar is not None else ((0, len(sequence)),)
            ref_len = sum(n for op, n in cigar if op in (0, 2, 3, 7, 8))
            outcome = Mapped(0, contig, start, start + ref_len, cigar)
        return AlignmentRecord(
            read_id=read_id,
            sequence=sequence,
            qualities=None if qualities is None else tuple(qualities),
            mapq=mapq,
            kind=kind,
            outcome=outcome,
            mm_tag=mm,
            ml_tag=ml,
        )
    return _make
