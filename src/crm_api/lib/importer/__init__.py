"""Importer library public API.

Pure functions for decoding and parsing contact CSVs, suggesting column
mappings, and building and validating staging rows.
"""

from crm_api.lib.importer.errors import ImportStateError, ImportStructureError, TemplateValidationError
from crm_api.lib.importer.parser import ParsedCsv, decode_csv_bytes, detect_delimiter, generate_sample_csv, parse_csv
from crm_api.lib.importer.sniffer import (
    SniffResult,
    clean_mapping,
    display_suggestion,
    mapping_from_template,
    normalize_header,
    sniff_headers,
)
from crm_api.lib.importer.validator import (
    StagedValues,
    ValidationContext,
    build_staging_row,
    check_row,
    evaluate_rows,
    normalize_email,
    normalize_phone,
)

__all__ = [
    "ImportStateError",
    "ImportStructureError",
    "ParsedCsv",
    "SniffResult",
    "StagedValues",
    "TemplateValidationError",
    "ValidationContext",
    "build_staging_row",
    "check_row",
    "clean_mapping",
    "decode_csv_bytes",
    "detect_delimiter",
    "display_suggestion",
    "evaluate_rows",
    "generate_sample_csv",
    "mapping_from_template",
    "normalize_email",
    "normalize_header",
    "normalize_phone",
    "parse_csv",
    "sniff_headers",
]
