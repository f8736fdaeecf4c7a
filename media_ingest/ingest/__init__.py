"""
Resumable bulk ingestion.

Discovers candidate collections, plans each one against existing state and
applies the plan through the job engine.
"""

from .archive_reader import ArchiveEntry, ArchiveReader
from .bulk_ingestion import (
    BulkIngestionService,
    normalize_path,
    parse_request,
    validate_parent_path,
)
from .candidate_scanner import CandidateScanner, scan_candidates
from .gap_analyzer import compute_gaps
from .resume_planner import plan_resume

__all__ = [
    "ArchiveEntry",
    "ArchiveReader",
    "CandidateScanner",
    "scan_candidates",
    "compute_gaps",
    "plan_resume",
    "BulkIngestionService",
    "normalize_path",
    "parse_request",
    "validate_parent_path",
]
