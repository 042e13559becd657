"""
Reviewable Data Migration Tool

Extracts the data reachable from a set of repositories out of one Reviewable
datastore into a line-delimited record file, remapping user and organization
ids on the way, and loads such a file into another datastore.
"""

from __future__ import annotations

from .cli import main
from .exceptions import ConfigurationError, MappingError, MigrationError, RecordFormatError, StoreError
from .extractor import Extractor
from .loader import Loader
from .mapping import OrgMapper, UserMapper
from .records import RecordWriter, read_records, stream_records
from .rewriter import rewrite_user_keys
from .scheduler import for_each_limit
from .utils import setup_logging

# Package version
__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "Extractor",
    "Loader",
    "MappingError",
    "MigrationError",
    "OrgMapper",
    "RecordFormatError",
    "RecordWriter",
    "StoreError",
    "UserMapper",
    "for_each_limit",
    "main",
    "read_records",
    "rewrite_user_keys",
    "setup_logging",
    "stream_records",
]
