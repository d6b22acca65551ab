"""Unit tests for streaming aggregation into validator and cluster metrics."""

from __future__ import annotations

import statistics

import pytest

from sandwichsentry.attribution.aggregate import ClusterAccumulator, MetricsAggregator
from sandwichsentry.attribution.credit import WeightedBlock
from sandwichsentry.errors import MalformedBlockError

from conftest import key


def weighted(slot: int, leader: str, raw: int, weighted_count: float | None = None,
             weighted_inclusive: float | None = None) -> WeightedBlock:
    return WeightedBlock(
        slot=slot,
        leader_identity=key(leader),
        raw_inclusive=int(raw > 0),
        raw_count=raw,
        weighted_inclusive=float(raw > 0) if weighted_inclusive is None else weighted_inclusive,
        weighted_count=float(raw) if weighted_count is None else weighted_count,
    )


class TestClusterAccumulator:
    """Test suite for cluster-wide baseline statistics."""

    def test_population_statistics(self) -> None:
        counts = [0, 0, 1, 3, 0, 2, 0, 0]
        cluster = ClusterAccumulator()
        for count in counts:
            cluster.add(count)

        baseline = cluster.baseline()
        assert baseline.total_blocks == 8
        assert baseline.sandwich_inclusive_blocks == 3
        assert baseline.proportion == pytest.approx(3 / 8)
        assert baseline.mean_sandwiches_per_block == pytest.approx(statistics.fmean(counts))
        assert baseline.std_dev_sandwiches_per_block == pytest.approx(statistics.pstdev(counts))

    def test_empty_baseline(self) -> None:
        baseline = ClusterAccumulator().baseline()
        assert baseline.total_blocks == 0
        assert baseline.proportion == 0.0
        assert baseline.std_dev_sandwiches_per_block == 0.0

    def test_constant_counts_have_zero_spread(self) -> None:
        cluster = ClusterAccumulator()
        for _ in range(5):
            cluster.add(2)
        assert cluster.baseline().std_dev_sandwiches_per_block == 0.0


class TestMetricsAggregator:
    """Test suite for MetricsAggregator."""

    def test_validator_counters(self) -> None:
        aggregator = MetricsAggregator()
        aggregator.add_many([
            weighted(1, "A", 0, weighted_count=1.0, weighted_inclusive=0.5),
            weighted(2, "B", 0),
            weighted(3, "A", 2, weighted_count=1.0, weighted_inclusive=0.5),
        ])
        result = aggregator.finalize()

        raw = result.raw_counts[key("A")]
        assert raw.slots_observed == 2
        assert raw.raw_sandwich_inclusive_blocks == 1
        assert raw.raw_sandwich_count == 2

        smeared = result.weighted_counts[key("A")]
        assert smeared.weighted_sandwich_count == pytest.approx(2.0)
        assert smeared.weighted_sandwich_inclusive_blocks == pytest.approx(1.0)
        assert smeared.presence_rate == pytest.approx(0.5)
        assert result.validator_count == 2

    def test_cluster_uses_raw_counts(self) -> None:
        """Smearing moves credit between validators' slots but never alters the baseline."""
        aggregator = MetricsAggregator()
        aggregator.add(weighted(1, "A", 0, weighted_count=0.5, weighted_inclusive=0.5))
        aggregator.add(weighted(2, "A", 1, weighted_count=0.5, weighted_inclusive=0.5))

        baseline = aggregator.finalize().baseline
        assert baseline.sandwich_inclusive_blocks == 1
        assert baseline.proportion == pytest.approx(0.5)
        assert baseline.mean_sandwiches_per_block == pytest.approx(0.5)

    def test_out_of_order_slot_rejected(self) -> None:
        aggregator = MetricsAggregator()
        aggregator.add(weighted(10, "A", 0))
        with pytest.raises(MalformedBlockError) as exc:
            aggregator.add(weighted(10, "B", 0))
        assert exc.value.slot == 10

    def test_merge_matches_single_pass(self) -> None:
        blocks = [weighted(s, "A" if s % 3 else "B", s % 4) for s in range(1, 25)]

        single = MetricsAggregator()
        single.add_many(blocks)

        first, second = MetricsAggregator(), MetricsAggregator()
        first.add_many(blocks[:10])
        second.add_many(blocks[10:])
        first.merge(second)

        expected = single.finalize()
        merged = first.finalize()
        assert merged.baseline == expected.baseline
        assert merged.raw_counts == expected.raw_counts
        assert merged.weighted_counts == expected.weighted_counts

    def test_to_dataframe(self) -> None:
        aggregator = MetricsAggregator()
        aggregator.add_many([weighted(1, "B", 1), weighted(2, "A", 0)])
        df = aggregator.finalize().to_dataframe()

        assert list(df["identity"]) == [key("A"), key("B")]
        assert df.loc[df["identity"] == key("B"), "raw_sandwich_count"].item() == 1

    def test_empty_dataframe_keeps_columns(self) -> None:
        df = MetricsAggregator().finalize().to_dataframe()
        assert df.empty
        assert "weighted_sandwich_count" in df.columns
