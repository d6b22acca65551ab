"""Unit tests for validator report assembly."""

from __future__ import annotations

import io

import pandas as pd
import pytest

from sandwichsentry.config import AnalysisConfig
from sandwichsentry.flagging import StatisticalFlagger
from sandwichsentry.models.validator import (
    REPORT_COLUMNS,
    ClusterBaseline,
    ValidatorMetadata,
    ValidatorWeightedCounts,
)
from sandwichsentry.reporting import (
    ExclusionList,
    ReportAssembler,
    metadata_from_frame,
    records_to_dataframe,
)

from conftest import key


@pytest.fixture
def baseline() -> ClusterBaseline:
    return ClusterBaseline(
        total_blocks=1000,
        sandwich_inclusive_blocks=18,
        proportion=0.018,
        mean_sandwiches_per_block=0.02,
        std_dev_sandwiches_per_block=0.15,
    )


@pytest.fixture
def flagging(baseline):
    """One heavy validator, one short-lived outlier and one quiet validator."""
    counts = [
        ValidatorWeightedCounts(
            identity=key("Heavy"),
            slots_observed=1000,
            weighted_sandwich_inclusive_blocks=80,
            weighted_sandwich_count=120,
        ),
        ValidatorWeightedCounts(
            identity=key("Short"),
            slots_observed=10,
            weighted_sandwich_inclusive_blocks=9,
            weighted_sandwich_count=20,
        ),
        ValidatorWeightedCounts(
            identity=key("Quiet"),
            slots_observed=400,
            weighted_sandwich_inclusive_blocks=2,
            weighted_sandwich_count=2,
        ),
    ]
    return StatisticalFlagger().evaluate(counts, baseline)


class TestExclusionList:
    """Test suite for ExclusionList."""

    def test_from_records(self) -> None:
        exclusions = ExclusionList.from_records([
            {"identity": key("Heavy"), "reason": "known searcher relay"},
            {"leader": key("Short")},
        ])
        assert key("Heavy") in exclusions
        assert len(exclusions) == 2
        assert exclusions.reason_for(key("Short")) == "manual override"
        assert exclusions.reason_for(key("Quiet")) is None

    def test_record_without_identity(self) -> None:
        with pytest.raises(ValueError):
            ExclusionList.from_records([{"reason": "no key"}])

    def test_from_frame(self) -> None:
        frame = pd.DataFrame({"leader": [key("Heavy")], "reason": [float("nan")]})
        assert ExclusionList.from_frame(frame).reason_for(key("Heavy")) == "manual override"


class TestMetadata:
    """Test suite for validator metadata parsing."""

    def test_report_column_names(self) -> None:
        frame = pd.DataFrame({
            "leader": [key("Heavy"), "not-a-key"],
            "vote": [key("Vote"), None],
            "name": ["Heavy Node", "broken"],
        })
        metadata = metadata_from_frame(frame)
        assert list(metadata) == [key("Heavy")]
        assert metadata[key("Heavy")].vote_account == key("Vote")

    def test_blank_name_from_csv(self) -> None:
        """Blank CSV cells arrive as NaN and still keep the row."""
        csv_text = (
            "identity,vote_account,name\n"
            f"{key('Heavy')},{key('Vote')},\n"
            f"{key('Quiet')},,Quiet Node\n"
        )
        frame = pd.read_csv(io.StringIO(csv_text))
        metadata = metadata_from_frame(frame)

        assert set(metadata) == {key("Heavy"), key("Quiet")}
        assert metadata[key("Heavy")].name is None
        assert metadata[key("Heavy")].vote_account == key("Vote")
        assert metadata[key("Quiet")].name == "Quiet Node"
        assert metadata[key("Quiet")].vote_account is None


class TestReportAssembler:
    """Test suite for ReportAssembler."""

    def test_short_validator_kept_out_of_filtered_view(self, flagging) -> None:
        """Flagged on both metrics after 10 slots: reported in full, not filtered."""
        report = ReportAssembler().assemble(flagging)
        short = next(r for r in report.full if r.identity == key("Short"))

        assert short.sc_p_flag and short.sc_flag
        assert key("Short") not in {r.identity for r in report.filtered}
        assert report.excluded[key("Short")] == "10 slots, fewer than 50"

    def test_filtered_view(self, flagging) -> None:
        report = ReportAssembler().assemble(flagging)
        assert [r.identity for r in report.filtered] == [key("Heavy")]
        assert report.flagged_count == 2
        assert report.to_dict()["filtered"] == 1

    def test_exclusion_list_does_not_change_flags(self, flagging) -> None:
        exclusions = ExclusionList({key("Heavy"): "known searcher relay"})
        report = ReportAssembler(exclusions=exclusions).assemble(flagging)

        heavy = next(r for r in report.full if r.identity == key("Heavy"))
        assert heavy.flagged
        assert report.filtered == ()
        assert report.excluded[key("Heavy")] == "known searcher relay"

    def test_min_report_slots_configurable(self, flagging) -> None:
        report = ReportAssembler(AnalysisConfig(min_report_slots=5)).assemble(flagging)
        assert {r.identity for r in report.filtered} == {key("Heavy"), key("Short")}

    def test_full_view_sorted_by_score(self, flagging) -> None:
        report = ReportAssembler().assemble(flagging)
        scores = [r.sc for r in report.full]
        assert scores == sorted(scores, reverse=True)
        assert report.full[0].identity == key("Short")

    def test_normalised_scores(self, flagging) -> None:
        report = ReportAssembler().assemble(flagging)
        heavy = next(r for r in report.full if r.identity == key("Heavy"))
        assessment = flagging.assessments[key("Heavy")]

        assert heavy.sc == pytest.approx(0.12)
        assert heavy.sc_p == pytest.approx(0.08)
        assert heavy.sc_raw == 120
        assert heavy.sc_upper == pytest.approx(assessment.count.upper / 1000)
        assert heavy.sc_lower == pytest.approx(max(assessment.count.lower, 0.0) / 1000)
        assert heavy.sc_lower >= 0.0

    def test_metadata_attached(self, flagging) -> None:
        metadata = {key("Heavy"): ValidatorMetadata(identity=key("Heavy"), vote_account=key("Vote"), name="Heavy")}
        report = ReportAssembler(metadata=metadata).assemble(flagging)
        row = report.full_frame().set_index("leader").loc[key("Heavy")]
        assert row["vote"] == key("Vote")
        assert row["name"] == "Heavy"

    def test_frames_have_report_columns(self, flagging) -> None:
        report = ReportAssembler().assemble(flagging)
        assert list(report.full_frame().columns) == REPORT_COLUMNS
        assert len(report.full_frame()) == 3
        assert list(report.filtered_frame().columns) == REPORT_COLUMNS

    def test_empty_frame_keeps_columns(self) -> None:
        df = records_to_dataframe([])
        assert df.empty
        assert list(df.columns) == REPORT_COLUMNS
