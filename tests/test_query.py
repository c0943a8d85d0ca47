"""
End-to-end tests for the query operations.

Exact values are checked against the hand-written example BAM; statistical
and set properties against simulated BAMs.
"""
import io
import os

import pandas as pd
import pytest

from modscope.core.errors import ConfigurationError, DataError, NotFoundError
from modscope.query import bam_mods, peek, read_info, seq_table, window_reads

from conftest import (
    EXAMPLE_CONTIGS,
    EXAMPLE_READ_ID,
    INDEL_READ_ID,
    REVERSE_READ_ID,
    UNMAPPED_READ_ID,
)


def read_tsv(text):
    return pd.read_csv(io.StringIO(text), sep='\t', dtype=str, keep_default_na=False)


def ids(rows):
    return [row['read_id'] for row in rows]


# =============================================================================
# peek
# =============================================================================

class TestPeek:
    def test_example(self, example_bam):
        result = peek(example_bam)
        assert result['contigs'] == EXAMPLE_CONTIGS
        assert result['modifications'] == [['G', '-', '7200'], ['T', '+', 'T']]

    def test_missing_file(self, temp_dir):
        with pytest.raises(NotFoundError):
            peek(os.path.join(temp_dir, 'missing.bam'))

    def test_invalid_url(self):
        with pytest.raises(ConfigurationError, match='Invalid URL'):
            peek('not a url', treat_as_url=True)

    def test_simulated(self, simple_bam):
        result = peek(simple_bam)
        assert list(result['contigs']) == ['contig_00000', 'contig_00001']
        assert ['T', '+', 'T'] in result['modifications']


# =============================================================================
# read_info
# =============================================================================

class TestReadInfo:
    def test_example_rows(self, example_bam):
        rows = read_info(example_bam)
        assert ids(rows) == [EXAMPLE_READ_ID, REVERSE_READ_ID, INDEL_READ_ID, UNMAPPED_READ_ID]

        first = rows[0]
        assert first == {
            'read_id': EXAMPLE_READ_ID,
            'sequence_length': 8,
            'contig': 'dummyI',
            'reference_start': 9,
            'reference_end': 17,
            'alignment_length': 8,
            'alignment_type': 'primary_forward',
            'mod_count': 'T+T:0;(probabilities >= 0.5020, PHRED base qual >= 0)',
        }

    def test_unmapped_row_has_no_alignment_fields(self, example_bam):
        row = read_info(example_bam, read_filter='unmapped')[0]
        assert set(row) == {'read_id', 'sequence_length', 'alignment_type', 'mod_count'}
        assert row['mod_count'].startswith('T+T:1;')

    def test_reverse_row(self, example_bam):
        row = read_info(example_bam, read_id_set=[REVERSE_READ_ID])[0]
        assert row['alignment_type'] == 'primary_reverse'
        assert row['mod_count'].startswith('G-7200:1;')

    def test_region(self, example_bam):
        assert ids(read_info(example_bam, region='dummyIII')) == [INDEL_READ_ID]
        assert read_info(example_bam, region='dummyI:0-5') == []

    def test_full_region(self, example_bam):
        assert ids(read_info(example_bam, region='dummyI:10-15', full_region=True)) == [EXAMPLE_READ_ID]
        assert read_info(example_bam, region='dummyI:5-15', full_region=True) == []

    def test_unknown_region_contig(self, example_bam):
        with pytest.raises(NotFoundError):
            read_info(example_bam, region='chrZ:1-10')

    def test_exclude_mapq_unavail(self, example_bam):
        rows = read_info(example_bam, exclude_mapq_unavail=True)
        assert ids(rows) == [EXAMPLE_READ_ID, INDEL_READ_ID]

    def test_min_mod_qual_reflected_in_threshold(self, example_bam):
        row = read_info(example_bam, min_mod_qual=200, read_filter='unmapped')[0]
        assert row['mod_count'] == 'T+T:1;(probabilities >= 0.7843, PHRED base qual >= 0)'

    def test_length_filters_monotonic(self, simple_bam):
        counts = [len(read_info(simple_bam, min_seq_len=n)) for n in (0, 1200, 1500, 1800, 2500)]
        assert counts == sorted(counts, reverse=True)
        assert counts[-1] == 0
        align = [len(read_info(simple_bam, min_align_len=n)) for n in (0, 1200, 1600, 2500)]
        assert align == sorted(align, reverse=True)

    def test_all_reads_returned(self, simple_bam):
        assert len(read_info(simple_bam)) == 300

    def test_exclude_mapq_unavail_with_high_mapq_filter_is_empty(self, indel_bam):
        assert len(read_info(indel_bam, mapq_filter=100)) > 0
        assert read_info(indel_bam, mapq_filter=100, exclude_mapq_unavail=True) == []

    def test_sampling(self, simple_bam):
        full = ids(read_info(simple_bam))
        a = ids(read_info(simple_bam, sample_fraction=0.5, sample_seed=1))
        b = ids(read_info(simple_bam, sample_fraction=0.5, sample_seed=1))
        c = ids(read_info(simple_bam, sample_fraction=0.5, sample_seed=2))
        assert a == b
        assert set(a) != set(c)
        assert 105 <= len(a) <= 195
        assert ids(read_info(simple_bam, sample_fraction=1.0)) == full

    def test_pagination_reproduces_full_result(self, simple_bam):
        full = read_info(simple_bam)
        pages = []
        offset = 0
        while True:
            page = read_info(simple_bam, limit=70, offset=offset)
            pages.extend(page)
            if len(page) < 70:
                break
            offset += 70
        assert pages == full

    def test_pagination_with_seeded_sampling(self, simple_bam):
        sampled = ids(read_info(simple_bam, sample_fraction=0.4, sample_seed=5))
        paged = (ids(read_info(simple_bam, sample_fraction=0.4, sample_seed=5, limit=20))
                 + ids(read_info(simple_bam, sample_fraction=0.4, sample_seed=5, limit=1000, offset=20)))
        assert paged == sampled

    def test_invalid_option_fails_before_open(self, temp_dir):
        with pytest.raises(ConfigurationError):
            read_info(os.path.join(temp_dir, 'missing.bam'), threads=0)


# =============================================================================
# bam_mods
# =============================================================================

class TestBamMods:
    def test_example_read(self, example_bam):
        row = bam_mods(example_bam, limit=1)[0]
        assert row == {
            'alignment_type': 'primary_forward',
            'alignment': {'start': 9, 'end': 17, 'contig': 'dummyI', 'contig_id': 0},
            'mod_table': [{
                'base': 'T', 'is_strand_plus': True, 'mod_code': 'T',
                'data': [[0, 9, 4], [3, 12, 7], [4, 13, 9], [7, 16, 6]],
            }],
            'read_id': EXAMPLE_READ_ID,
            'seq_len': 8,
        }

    def test_unmapped_has_no_alignment(self, example_bam):
        row = bam_mods(example_bam, read_filter='unmapped')[0]
        assert 'alignment' not in row
        assert row['mod_table'][0]['data'] == [[0, -1, 240], [2, -1, 30]]

    def test_tag_partition(self, two_mods_bam):
        def n_calls(rows):
            return sum(len(entry['data']) for row in rows for entry in row['mod_table'])

        total = n_calls(bam_mods(two_mods_bam))
        t_calls = n_calls(bam_mods(two_mods_bam, tag='T'))
        m_calls = n_calls(bam_mods(two_mods_bam, tag='m'))
        assert t_calls > 0 and m_calls > 0
        assert t_calls + m_calls == total

    def test_reject_range(self, simple_bam):
        rows = bam_mods(simple_bam, reject_mod_qual_non_inclusive=[0, 255], limit=20)
        assert all(entry['data'] == [] for row in rows for entry in row['mod_table'])
        rows = bam_mods(simple_bam, reject_mod_qual_non_inclusive=[100, 101], limit=20)
        assert rows == bam_mods(simple_bam, limit=20)

    def test_mod_region(self, simple_bam):
        rows = bam_mods(simple_bam, mod_region='contig_00000:2000-3000')
        for row in rows:
            for entry in row['mod_table']:
                for _, ref_pos, _ in entry['data']:
                    assert row['alignment']['contig'] == 'contig_00000'
                    assert 2000 <= ref_pos < 3000

    def test_pagination(self, simple_bam):
        full = bam_mods(simple_bam, limit=60)
        assert bam_mods(simple_bam, limit=30) + bam_mods(simple_bam, limit=30, offset=30) == full

    def test_malformed_tags_abort(self, temp_dir):
        import pysam
        from array import array

        path = os.path.join(temp_dir, 'bad.bam')
        header = {'HD': {'VN': '1.6'}, 'SQ': [{'SN': 'chr1', 'LN': 100}]}
        with pysam.AlignmentFile(path, "wb", header=header) as out:
            read = pysam.AlignedSegment(out.header)
            read.query_name = 'bad'
            read.flag = 4
            read.reference_id = -1
            read.reference_start = -1
            read.query_sequence = 'ACGT'
            read.set_tag('MM', 'C+m,5;', value_type='Z')
            read.set_tag('ML', array('B', [200]))
            out.write(read)
        with pytest.raises(DataError):
            bam_mods(path)

    def test_malformed_tags_on_dropped_read_ignored(self, temp_dir):
        import pysam
        from array import array

        path = os.path.join(temp_dir, 'mixed.bam')
        header = {'HD': {'VN': '1.6'}, 'SQ': [{'SN': 'chr1', 'LN': 100}]}
        with pysam.AlignmentFile(path, "wb", header=header) as out:
            for name, mm in (('good', 'C+m,0;'), ('bad', 'C+m,x;')):
                read = pysam.AlignedSegment(out.header)
                read.query_name = name
                read.flag = 4
                read.reference_id = -1
                read.reference_start = -1
                read.query_sequence = 'ACGT'
                read.set_tag('MM', mm, value_type='Z')
                read.set_tag('ML', array('B', [200]))
                out.write(read)

        rows = read_info(path, read_id_set=['good'])
        assert [row['read_id'] for row in rows] == ['good']
        assert rows[0]['mod_count'].startswith('C+m:1;')
        assert bam_mods(path, limit=1)[0]['read_id'] == 'good'
        with pytest.raises(DataError, match='Non-integer skip count'):
            read_info(path)


# =============================================================================
# window_reads
# =============================================================================

class TestWindowReads:
    def test_first_row(self, example_bam):
        text = window_reads(example_bam, win=2, step=1)
        lines = text.splitlines()
        assert lines[0] == ('#contig\tref_win_start\tref_win_end\tread_id\twin_val\tstrand\tbase\t'
                            'mod_strand\tmod_type\twin_start\twin_end\tbasecall_qual')
        assert lines[1] == f'dummyI\t9\t13\t{EXAMPLE_READ_ID}\t0\t+\tT\t+\tT\t0\t4\t255'
        assert lines[2] == f'dummyI\t12\t14\t{EXAMPLE_READ_ID}\t0\t+\tT\t+\tT\t3\t5\t255'

    def test_columns_consistent(self, example_bam):
        df = read_tsv(window_reads(example_bam, win=1, step=1))
        assert len(df.columns) == 12
        unmapped = df[df['read_id'] == UNMAPPED_READ_ID]
        assert set(unmapped['#contig']) == {'.'}
        assert set(unmapped['ref_win_start']) == {'-1'}
        assert set(unmapped['strand']) == {'.'}

    def test_reverse_strand_row(self, example_bam):
        df = read_tsv(window_reads(example_bam, win=2, step=1, read_id_set=[REVERSE_READ_ID]))
        assert len(df) == 1
        row = df.iloc[0]
        assert (row['strand'], row['base'], row['mod_strand'], row['mod_type']) == ('-', 'G', '-', '7200')
        assert (row['win_start'], row['win_end']) == ('2', '12')
        assert row['win_val'] == '0.5'
        assert row['basecall_qual'] == '25'

    def test_invalid_win_op(self, example_bam):
        with pytest.raises(ConfigurationError, match='win_op must be set to'):
            window_reads(example_bam, win=2, step=1, win_op='invalid_option')

    def test_invalid_win(self, example_bam):
        with pytest.raises(ConfigurationError):
            window_reads(example_bam, win=0, step=1)

    def test_json_output(self, example_bam):
        rows = window_reads(example_bam, win=2, step=1, output='json', limit=1)
        assert rows[0]['mod_table'][0]['data'][0] == [0, 4, 9, 13, 0.0, 255]

    def test_grad_density(self, simple_bam):
        df = read_tsv(window_reads(simple_bam, win=5, step=5, win_op='grad_density', limit=10))
        values = df['win_val'].astype(float)
        assert values.between(-1, 1).all()

    def test_pagination_counts_reads(self, simple_bam):
        full = read_tsv(window_reads(simple_bam, win=10, step=10, limit=40))
        first = read_tsv(window_reads(simple_bam, win=10, step=10, limit=20))
        second = read_tsv(window_reads(simple_bam, win=10, step=10, limit=20, offset=20))
        assert first['read_id'].nunique() <= 20
        assert not set(first['read_id']) & set(second['read_id'])
        combined = pd.concat([first, second]).sort_values(list(full.columns)).reset_index(drop=True)
        assert combined.equals(full.sort_values(list(full.columns)).reset_index(drop=True))


# =============================================================================
# seq_table
# =============================================================================

class TestSeqTable:
    def test_indel_read(self, example_bam):
        df = read_tsv(seq_table(example_bam, 'dummyIII:20-33'))
        assert list(df.columns) == ['read_id', 'sequence', 'qualities']
        assert df.iloc[0]['read_id'] == INDEL_READ_ID
        assert df.iloc[0]['sequence'] == 'ACGZgaCCA..TGCA'
        assert df.iloc[0]['qualities'] == '30.30.30.30.20.20.30.30.30.255.255.30.30.30.30'

    def test_ten_base_round_trip(self, simple_bam):
        fasta = simple_bam[:-len('.bam')] + '.fasta'
        with open(fasta) as fh:
            lines = fh.read().split('>')[1].splitlines()
        reference = ''.join(lines[1:])

        df = read_tsv(seq_table(simple_bam, 'contig_00000:5000-5010', tag='x'))
        assert len(df) > 0
        for _, row in df.iterrows():
            assert row['sequence'] == reference[5000:5010]
            assert len(row['qualities'].split('.')) == 10

    def test_full_region_false_rejected(self, example_bam):
        with pytest.raises(ConfigurationError, match='full_region'):
            seq_table(example_bam, 'dummyI:10-12', full_region=False)

    def test_mismatched_mod_region_rejected(self, example_bam):
        with pytest.raises(ConfigurationError, match='mod_region'):
            seq_table(example_bam, 'dummyI:10-12', mod_region='dummyI:10-13')

    def test_matching_mod_region_accepted(self, example_bam):
        seq_table(example_bam, 'dummyI:10-12', mod_region='dummyI:10-12', full_region=True)

    def test_exclude_mapq_unavail(self, indel_bam):
        assert len(read_tsv(seq_table(indel_bam, 'contig_00000:4000-6000'))) > 0
        assert len(read_tsv(seq_table(indel_bam, 'contig_00000:4000-6000', exclude_mapq_unavail=True))) == 0

    def test_insertions_lowercase(self, indel_bam):
        df = read_tsv(seq_table(indel_bam, 'contig_00000:4000-6000'))
        assert any(any(ch.islower() for ch in seq) for seq in df['sequence'])

    def test_pagination_set(self, simple_bam):
        full = read_tsv(seq_table(simple_bam, 'contig_00001:5000-5100'))
        pages = pd.concat([
            read_tsv(seq_table(simple_bam, 'contig_00001:5000-5100', limit=5, offset=o))
            for o in range(0, len(full) + 5, 5)
        ])
        assert set(map(tuple, pages.values)) == set(map(tuple, full.values))
        assert len(pages) == len(full)
