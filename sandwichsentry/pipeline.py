"""End-to-end analysis run over a batch of already decoded blocks.

Stages run strictly forward::

    validate -> detect -> (audit sink) -> smear credit -> aggregate -> flag -> report

The run holds no state between calls; every result it produces is returned
in an :class:`AnalysisRun`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import pandas as pd

from sandwichsentry.attribution import AggregationResult, CreditDistribution, CreditDistributor, MetricsAggregator
from sandwichsentry.config import AnalysisConfig
from sandwichsentry.detection import AUDIT_COLUMNS, BlockDetection, detect_blocks
from sandwichsentry.flagging import FlaggingResult, StatisticalFlagger
from sandwichsentry.models import Block, SandwichInstance, ValidatorMetadata
from sandwichsentry.reporting import ExclusionList, ReportAssembler, ValidatorReport
from sandwichsentry.validation import BlockValidator, ValidationResult

logger = logging.getLogger(__name__)


class SandwichSink(Protocol):
    """Append-only consumer of detected sandwiches."""

    def append(self, instances: Sequence[SandwichInstance]) -> None: ...


@dataclass
class AuditLogSink:
    """In-memory sink collecting one audit row per sandwich member swap."""

    records: list[dict[str, Any]] = field(default_factory=list)
    sandwich_count: int = 0

    def append(self, instances: Sequence[SandwichInstance]) -> None:
        for instance in instances:
            self.records.extend(instance.to_audit_records())
            self.sandwich_count += 1

    def to_dataframe(self) -> pd.DataFrame:
        if not self.records:
            return pd.DataFrame(columns=AUDIT_COLUMNS)
        return pd.DataFrame(self.records, columns=AUDIT_COLUMNS)


@dataclass(frozen=True)
class AnalysisRun:
    """Every intermediate and final result of one analysis run."""

    config: AnalysisConfig
    validation: ValidationResult
    detections: tuple[BlockDetection, ...]
    credit: CreditDistribution
    aggregation: AggregationResult
    flagging: FlaggingResult
    report: ValidatorReport
    elapsed_seconds: float = 0.0

    @property
    def sandwiches(self) -> list[SandwichInstance]:
        return [instance for detection in self.detections for instance in detection.instances]

    @property
    def sandwich_count(self) -> int:
        return sum(d.sandwich_count for d in self.detections)

    @property
    def rejected_slots(self) -> dict[int, str]:
        return self.validation.rejected_slots

    def to_dict(self) -> dict[str, Any]:
        """Summary of the run for logging and reports."""
        return {
            "config": self.config.to_dict(),
            "validation": self.validation.to_dict(),
            "blocks_analyzed": len(self.detections),
            "sandwiches": self.sandwich_count,
            "credit": self.credit.to_dict(),
            "aggregation": self.aggregation.to_dict(),
            "flagging": self.flagging.to_dict(),
            "report": self.report.to_dict(),
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


def run_analysis(
    blocks: Iterable[Block | Mapping[str, Any]],
    config: AnalysisConfig | None = None,
    metadata: Mapping[str, ValidatorMetadata] | None = None,
    exclusions: ExclusionList | None = None,
    sink: SandwichSink | None = None,
) -> AnalysisRun:
    """Run the full analysis over one batch of blocks.

    Args:
        blocks: Decoded blocks (or block mappings) for the slot range.
        config: Run configuration; defaults apply when omitted.
        metadata: Display metadata per validator identity.
        exclusions: Manual override table for the filtered report.
        sink: Receives each block's sandwiches as they are detected.

    Returns:
        AnalysisRun with every stage's result.

    Raises:
        ConfigurationError: If the smear weights are invalid; raised before
            any block is processed.
    """
    config = config or AnalysisConfig()
    distributor = CreditDistributor.from_config(config)
    start_time = time.time()

    validation = BlockValidator().validate_blocks(blocks)
    logger.info(
        "Validated %d blocks: %d accepted, %d rejected",
        validation.total_records,
        validation.valid_records,
        validation.invalid_records,
    )

    detections = detect_blocks(validation.blocks, config)
    if sink is not None:
        for detection in detections:
            if detection.instances:
                sink.append(detection.instances)
    logger.info(
        "Detected %d sandwiches in %d blocks",
        sum(d.sandwich_count for d in detections),
        len(detections),
    )

    credit = distributor.distribute_all(detections, workers=config.workers)

    aggregator = MetricsAggregator()
    aggregator.add_many(credit.weighted_blocks)
    aggregation = aggregator.finalize()

    flagging = StatisticalFlagger(config).evaluate(aggregation.weighted_counts, aggregation.baseline)
    report = ReportAssembler(config, metadata=metadata, exclusions=exclusions).assemble(flagging)

    elapsed = time.time() - start_time
    logger.info("Analysis complete in %.2f seconds", elapsed)

    return AnalysisRun(
        config=config,
        validation=validation,
        detections=tuple(detections),
        credit=credit,
        aggregation=aggregation,
        flagging=flagging,
        report=report,
        elapsed_seconds=elapsed,
    )


__all__ = [
    "AnalysisRun",
    "AuditLogSink",
    "SandwichSink",
    "run_analysis",
]
