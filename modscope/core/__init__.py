"""Data model, region parsing, MM/ML tags and BAM access."""

from modscope.core.errors import ConfigurationError, DataError, NotFoundError
from modscope.core.region import GenomicRegion, parse_region
from modscope.core.records import AlignmentKind, AlignmentRecord, ModCall
from modscope.core.filter_spec import FilterSpec, WindowSpec
from modscope.core.bam_reader import BamSource
