"""Assembly of the externally consumed validator report.

The report carries one row per evaluated validator in a fixed 14-column
schema. Two views are produced: the full set and a filtered set holding only
validators that are flagged on both metrics, observed for enough slots, and
not on the manually curated exclusion list. The exclusion list only shapes
the filtered view; it never changes a flag.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import pandas as pd
from pydantic import ValidationError

from sandwichsentry.config import AnalysisConfig
from sandwichsentry.flagging.flagger import FlaggingResult, ValidatorAssessment
from sandwichsentry.models.validator import REPORT_COLUMNS, ValidatorMetadata, ValidatorReportRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExclusionList:
    """Manually curated validators kept out of the filtered report.

    Attributes:
        reasons: Free-text reason per validator identity.
    """

    reasons: dict[str, str] = field(default_factory=dict)

    def __contains__(self, identity: object) -> bool:
        return identity in self.reasons

    def __len__(self) -> int:
        return len(self.reasons)

    def reason_for(self, identity: str) -> str | None:
        return self.reasons.get(identity)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> ExclusionList:
        """Build from mappings with an ``identity`` (or ``leader``) and optional ``reason``."""
        reasons: dict[str, str] = {}
        for record in records:
            identity = record.get("identity") or record.get("leader")
            if not identity or not str(identity).strip():
                raise ValueError(f"Exclusion record without identity: {dict(record)}")
            reason = record.get("reason")
            if reason is None or (isinstance(reason, float) and reason != reason):
                reason = "manual override"
            reasons[str(identity).strip()] = str(reason).strip()
        return cls(reasons)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> ExclusionList:
        return cls.from_records(frame.to_dict("records"))


def metadata_from_frame(frame: pd.DataFrame) -> dict[str, ValidatorMetadata]:
    """Parse validator display metadata, skipping rows that fail validation.

    Accepts ``identity``/``vote_account``/``name`` columns, or the report
    names ``leader``/``vote``.
    """
    renamed = frame.rename(columns={"leader": "identity", "vote": "vote_account"})
    metadata: dict[str, ValidatorMetadata] = {}
    for idx, record in enumerate(renamed.to_dict("records")):
        try:
            entry = ValidatorMetadata(**record)
        except ValidationError as e:
            logger.warning("Skipping metadata row %d: %s", idx, e.errors()[0]["msg"])
            continue
        metadata[entry.identity] = entry
    return metadata


@dataclass(frozen=True)
class ValidatorReport:
    """Full and filtered report views for one run.

    Attributes:
        full: One record per evaluated validator.
        filtered: Records flagged on both metrics, not excluded, with enough slots.
        excluded: Reason per flagged identity that was kept out of the filtered view.
    """

    full: tuple[ValidatorReportRecord, ...]
    filtered: tuple[ValidatorReportRecord, ...]
    excluded: dict[str, str] = field(default_factory=dict)

    @property
    def flagged_count(self) -> int:
        return sum(1 for r in self.full if r.flagged)

    def full_frame(self) -> pd.DataFrame:
        return records_to_dataframe(self.full)

    def filtered_frame(self) -> pd.DataFrame:
        return records_to_dataframe(self.filtered)

    def to_dict(self) -> dict[str, Any]:
        return {
            "validators": len(self.full),
            "flagged": self.flagged_count,
            "filtered": len(self.filtered),
            "excluded": dict(self.excluded),
        }


def records_to_dataframe(records: Iterable[ValidatorReportRecord]) -> pd.DataFrame:
    """Convert report records to a DataFrame in the fixed column order.

    Args:
        records: Report records.

    Returns:
        DataFrame with :data:`REPORT_COLUMNS`; empty frames keep the columns.
    """
    rows = [record.to_dict() for record in records]
    if not rows:
        return pd.DataFrame(columns=REPORT_COLUMNS)
    return pd.DataFrame(rows, columns=REPORT_COLUMNS)


class ReportAssembler:
    """Turn flagging results into report records.

    Example:
        >>> assembler = ReportAssembler(config, metadata=metadata, exclusions=exclusions)
        >>> report = assembler.assemble(flagging)
        >>> report.filtered_frame().to_parquet("flagged.parquet")
    """

    def __init__(
        self,
        config: AnalysisConfig | None = None,
        metadata: Mapping[str, ValidatorMetadata] | None = None,
        exclusions: ExclusionList | None = None,
    ) -> None:
        self.config = config or AnalysisConfig()
        self.metadata = dict(metadata or {})
        self.exclusions = exclusions or ExclusionList()

    def build_record(self, assessment: ValidatorAssessment) -> ValidatorReportRecord:
        """Normalise one assessment into a report row."""
        slots = assessment.slots
        info = self.metadata.get(assessment.identity)
        return ValidatorReportRecord(
            identity=assessment.identity,
            vote_account=info.vote_account if info else None,
            name=info.name if info else None,
            sc=assessment.sc,
            sc_p=assessment.sc_p,
            sc_raw=assessment.sc_raw,
            sc_p_raw=assessment.sc_p_raw,
            slots=slots,
            sc_p_lower=assessment.presence.lower,
            sc_p_upper=assessment.presence.upper,
            sc_lower=max(assessment.count.lower, 0.0) / slots,
            sc_upper=assessment.count.upper / slots,
            sc_p_flag=assessment.presence_flag,
            sc_flag=assessment.count_flag,
        )

    def exclusion_reason(self, record: ValidatorReportRecord) -> str | None:
        """Why a flagged record stays out of the filtered view, if it does."""
        if record.slots < self.config.min_report_slots:
            return f"{record.slots} slots, fewer than {self.config.min_report_slots}"
        return self.exclusions.reason_for(record.identity)

    def assemble(self, flagging: FlaggingResult) -> ValidatorReport:
        records = sorted(
            (self.build_record(a) for a in flagging.assessments.values()),
            key=lambda r: (-r.sc, r.identity),
        )

        filtered: list[ValidatorReportRecord] = []
        excluded: dict[str, str] = {}
        for record in records:
            if not record.flagged:
                continue
            reason = self.exclusion_reason(record)
            if reason is None:
                filtered.append(record)
            else:
                excluded[record.identity] = reason

        report = ValidatorReport(full=tuple(records), filtered=tuple(filtered), excluded=excluded)
        logger.info(
            "Report: %d validators, %d flagged, %d in filtered view (%d excluded)",
            len(records),
            report.flagged_count,
            len(filtered),
            len(excluded),
        )
        return report


__all__ = [
    "ExclusionList",
    "ReportAssembler",
    "ValidatorReport",
    "metadata_from_frame",
    "records_to_dataframe",
]
