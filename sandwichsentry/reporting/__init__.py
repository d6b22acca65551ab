"""Validator report assembly."""

from sandwichsentry.reporting.report import (
    ExclusionList,
    ReportAssembler,
    ValidatorReport,
    metadata_from_frame,
    records_to_dataframe,
)

__all__ = [
    "ExclusionList",
    "ReportAssembler",
    "ValidatorReport",
    "metadata_from_frame",
    "records_to_dataframe",
]
