"""
Source file discovery and per-file processing.
"""

from .discovery import DiscoveryResult, FileDiscoveryLoop, compute_min_time
from .file_processor import FileProcessor
from .object_lister import ObjectPage, S3ObjectLister
from .source_keys import extract_timestamp, parse_source_key

__all__ = [
    "DiscoveryResult",
    "FileDiscoveryLoop",
    "compute_min_time",
    "FileProcessor",
    "ObjectPage",
    "S3ObjectLister",
    "extract_timestamp",
    "parse_source_key",
]
