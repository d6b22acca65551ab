"""Performance tests for sandwich detection on busy blocks.

Blocks are filled with random direct swaps plus planted sandwiches, each
planted attacker routing through its own wrapper program so the expected
sandwich count is known exactly.
"""

from __future__ import annotations

import time

import pytest

from sandwichsentry.config import AnalysisConfig
from sandwichsentry.detection.sandwich import detect_blocks, detect_sandwiches
from sandwichsentry.models.swap import Block, Direction, SwapEvent
from sandwichsentry.pipeline import run_analysis

from conftest import b58, key, signature


def generate_synthetic_block(
    slot: int,
    n_transactions: int,
    n_pools: int = 5,
    sandwich_probability: float = 0.05,
    leader: str = "Leader",
    seed: int = 42,
) -> tuple[Block, int]:
    """Generate a block of random swaps with planted sandwiches.

    Args:
        slot: Slot of the block.
        n_transactions: Approximate number of swaps to generate.
        n_pools: Number of unique pools.
        sandwich_probability: Probability of planting a sandwich at each step.
        leader: Tag of the leader identity.
        seed: Random seed for reproducibility.

    Returns:
        The block and the number of planted sandwiches.
    """
    import random

    rng = random.Random(seed + slot)
    pools = [key(f"Market{b58(i)}") for i in range(n_pools)]

    swaps: list[SwapEvent] = []
    planted = 0

    def add(pool: str, signer: str, direction: Direction, wrapper: str | None, amounts: tuple[int, int]) -> None:
        idx = len(swaps)
        swaps.append(
            SwapEvent(
                signature=signature(slot * 100_000 + idx),
                pool_id=pool,
                signer=signer,
                wrapper_program=wrapper,
                direction=direction,
                input_amount=amounts[0],
                output_amount=amounts[1],
                inclusion_index=idx,
            )
        )

    while len(swaps) < n_transactions:
        pool = rng.choice(pools)
        if rng.random() < sandwich_probability:
            direction = rng.choice([Direction.BUY, Direction.SELL])
            bot = key(f"Bot{b58(planted)}")
            wrapper = key(f"Wrap{b58(planted)}")
            add(pool, bot, direction, wrapper, (100, 110))
            add(pool, key(f"User{b58(rng.randrange(50))}"), direction, None, (10, 9))
            add(pool, bot, direction.opposite(), wrapper, (109, 101))
            planted += 1
        else:
            direction = rng.choice([Direction.BUY, Direction.SELL])
            add(pool, key(f"Trader{b58(rng.randrange(200))}"), direction, None, (1000, 990))

    return Block(slot=slot, leader_identity=key(leader), swaps=tuple(swaps)), planted


class TestDetectionPerformance:
    """Performance tests for per-block detection."""

    @pytest.mark.parametrize("n_transactions", [100, 1000, 5000])
    def test_planted_sandwiches_found(self, n_transactions: int) -> None:
        block, planted = generate_synthetic_block(1, n_transactions)

        start_time = time.perf_counter()
        detection = detect_sandwiches(block)
        elapsed_time = time.perf_counter() - start_time

        print(f"\n{block.swap_count} swaps: {detection.sandwich_count} sandwiches in {elapsed_time:.4f}s")

        assert detection.sandwich_count == planted
        assert detection.swaps_analyzed == block.swap_count
        assert elapsed_time < 30.0

    def test_large_block(self) -> None:
        """A block far larger than anything seen on mainnet still finishes quickly."""
        block, planted = generate_synthetic_block(2, 20_000, n_pools=50)

        start_time = time.perf_counter()
        detection = detect_sandwiches(block)
        elapsed_time = time.perf_counter() - start_time

        print(f"\n20000 swaps processed in {elapsed_time:.4f}s")
        assert detection.sandwich_count == planted
        assert elapsed_time < 30.0, "Detection should handle 20000 swaps quickly"

    def test_parallel_detection_matches_sequential(self) -> None:
        blocks = [generate_synthetic_block(slot, 300)[0] for slot in range(1, 41)]

        sequential = detect_blocks(blocks, workers=1)
        parallel = detect_blocks(blocks, workers=8)

        assert [d.slot for d in parallel] == [b.slot for b in blocks]
        assert [[s.sandwich_id for s in d.instances] for d in sequential] == [
            [s.sandwich_id for s in d.instances] for d in parallel
        ]


class TestRunPerformance:
    """End-to-end run over many blocks."""

    def test_epoch_slice(self) -> None:
        blocks = []
        planted_total = 0
        for slot in range(1, 201):
            block, planted = generate_synthetic_block(slot, 60, leader=f"Leader{b58(slot // 4 % 10)}")
            blocks.append(block)
            planted_total += planted

        start_time = time.perf_counter()
        run = run_analysis(blocks, AnalysisConfig(workers=4))
        elapsed_time = time.perf_counter() - start_time

        print(f"\n200 blocks analysed in {elapsed_time:.4f}s")
        assert run.sandwich_count == planted_total
        assert run.aggregation.baseline.total_blocks == 200
        assert all(credit.is_conserved() for credit in run.credit.leaders.values())
        assert elapsed_time < 60.0
