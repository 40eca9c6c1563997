"""
Log Viewer Package - Reading, parsing and filtering watched log content

Package Structure:
- log_reader: Offset-based file reads and pooled decoders (ContentReader, DecoderPool)
- log_parser: Line formats and severities (LogParser, LogFormat, LogLine, Severity)
- log_filter: Filtering, clean formatting and statistics (FilterEngine, LogStats)
"""
from .log_reader import ContentReader, DecoderPool, tail_by_lines
from .log_parser import LogParser, LogFormat, LogLine, Severity, BUILT_IN_FORMATS
from .log_filter import FilterEngine, LogStats

__all__ = [
    # Reading
    'ContentReader',
    'DecoderPool',
    'tail_by_lines',

    # Parsing
    'LogParser',
    'LogFormat',
    'LogLine',
    'Severity',
    'BUILT_IN_FORMATS',

    # Filtering
    'FilterEngine',
    'LogStats',
]
