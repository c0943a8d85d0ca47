"""
modscope - read filtering, modification decoding, windowing and sequence
reconstruction for Mod-BAM (MM/ML tagged) alignment files.
"""

__version__ = "0.1.0"

from modscope.core.errors import ConfigurationError, DataError, NotFoundError
from modscope.query import bam_mods, peek, read_info, seq_table, window_reads
from modscope.simulate import simulate_mod_bam
