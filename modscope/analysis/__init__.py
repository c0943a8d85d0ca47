"""Filtering, decoding, windowing and reconstruction over alignment records."""

from modscope.analysis.filters import accepts, filter_records, stable_unit_hash
from modscope.analysis.decoder import ModTrack, decode_record
from modscope.analysis.windows import WindowBin, window_record
from modscope.analysis.reconstruct import ReconstructedSequence, reconstruct
from modscope.analysis.paginate import paginate
