from .codec import TimestampCodec, normalize_locale
from .config import SourceConfig
from .parameters import Parameter, ParameterKind, ParameterList
from .source import Source, test_source_connection

__all__ = [
    "TimestampCodec",
    "normalize_locale",
    "SourceConfig",
    "Parameter",
    "ParameterKind",
    "ParameterList",
    "Source",
    "test_source_connection",
]
