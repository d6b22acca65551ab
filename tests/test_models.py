"""Unit tests for the swap, block, sandwich and validator models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from sandwichsentry.models import (
    REPORT_COLUMNS,
    Block,
    ClusterBaseline,
    Direction,
    SandwichInstance,
    SandwichRole,
    SwapEvent,
    ValidatorMetadata,
    ValidatorRawCounts,
    ValidatorReportRecord,
)
from sandwichsentry.models.sandwich import WSOL_MINT
from sandwichsentry.models.swap import leader_group_start

from conftest import key, signature


class TestSwapEvent:
    """Test suite for SwapEvent Pydantic model."""

    @pytest.fixture
    def valid_swap_dict(self) -> dict:
        """Return a valid swap dictionary."""
        return {
            "signature": signature(7),
            "pool_id": "58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2",
            "signer": "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM",
            "wrapper_program": "vpeNALD89BZ4KxNUFjdLmFXBCwtyqBDQ85ouNoax38b",
            "direction": "buy",
            "input_amount": 1_000_000,
            "output_amount": 2_451_337,
            "inclusion_index": 412,
        }

    def test_valid_swap_creation(self, valid_swap_dict: dict) -> None:
        """Test creating a valid SwapEvent."""
        swap = SwapEvent(**valid_swap_dict)
        assert swap.direction is Direction.BUY
        assert swap.has_wrapper
        assert swap.dont_front is False

    def test_blank_wrapper_is_absent(self, valid_swap_dict: dict) -> None:
        """Blank and NaN wrapper values mean "no wrapper"."""
        valid_swap_dict["wrapper_program"] = "  "
        assert SwapEvent(**valid_swap_dict).wrapper_program is None
        valid_swap_dict["wrapper_program"] = float("nan")
        assert SwapEvent(**valid_swap_dict).wrapper_program is None

    def test_invalid_pubkey(self, valid_swap_dict: dict) -> None:
        """Keys with characters outside base58 are rejected."""
        valid_swap_dict["signer"] = "0" * 44
        with pytest.raises(ValidationError):
            SwapEvent(**valid_swap_dict)

    def test_invalid_signature(self, valid_swap_dict: dict) -> None:
        """Test validation of a short signature."""
        valid_swap_dict["signature"] = "abc"
        with pytest.raises(ValidationError):
            SwapEvent(**valid_swap_dict)

    def test_negative_amount(self, valid_swap_dict: dict) -> None:
        """Amounts must be non-negative."""
        valid_swap_dict["input_amount"] = -1
        with pytest.raises(ValidationError):
            SwapEvent(**valid_swap_dict)

    def test_unknown_direction(self, valid_swap_dict: dict) -> None:
        valid_swap_dict["direction"] = "sideways"
        with pytest.raises(ValidationError):
            SwapEvent(**valid_swap_dict)

    def test_extra_field_forbidden(self, valid_swap_dict: dict) -> None:
        valid_swap_dict["amount_usd"] = "12.5"
        with pytest.raises(ValidationError):
            SwapEvent(**valid_swap_dict)

    def test_frozen(self, valid_swap_dict: dict) -> None:
        """Swap events are immutable."""
        swap = SwapEvent(**valid_swap_dict)
        with pytest.raises(ValidationError):
            swap.input_amount = 5

    def test_to_dict_method(self, valid_swap_dict: dict) -> None:
        """Test conversion to dictionary."""
        result = SwapEvent(**valid_swap_dict).to_dict()
        assert result["direction"] == "buy"
        assert result["inclusion_index"] == 412

    def test_direction_opposite(self) -> None:
        assert Direction.BUY.opposite() is Direction.SELL
        assert Direction.SELL.opposite() is Direction.BUY


class TestBlock:
    """Test suite for the Block model."""

    def test_swaps_must_be_strictly_ordered(self, make_swap) -> None:
        """Duplicate or decreasing inclusion indexes make a block malformed."""
        swaps = (make_swap(2, "buy"), make_swap(2, "sell", sig=signature(99)))
        with pytest.raises(ValidationError):
            Block(slot=10, leader_identity=key("Leader"), swaps=swaps)

        swaps = (make_swap(3, "buy"), make_swap(1, "sell"))
        with pytest.raises(ValidationError):
            Block(slot=10, leader_identity=key("Leader"), swaps=swaps)

    def test_missing_leader(self) -> None:
        with pytest.raises(ValidationError):
            Block(slot=10, leader_identity="", swaps=())

    def test_swaps_by_pool_keeps_order(self, make_swap, make_block) -> None:
        block = make_block(
            5,
            [
                make_swap(1, "buy", pool="MarketA"),
                make_swap(2, "buy", pool="MarketB"),
                make_swap(3, "sell", pool="MarketA"),
            ],
        )
        grouped = block.swaps_by_pool()
        assert [s.inclusion_index for s in grouped[key("MarketA")]] == [1, 3]
        assert block.pools == {key("MarketA"), key("MarketB")}
        assert [s.inclusion_index for s in block.swaps_for_pool(key("MarketB"))] == [2]
        assert block.swap_count == 3

    def test_leader_group_start(self) -> None:
        assert leader_group_start(371237175) == 371237172
        assert leader_group_start(8) == 8


class TestSandwichInstance:
    """Test suite for the SandwichInstance model."""

    def test_create_assigns_deterministic_id(self, scenario_one) -> None:
        a, b, c = scenario_one
        first = SandwichInstance.create(100, key("Leader"), a, [b], c)
        second = SandwichInstance.create(100, key("Leader"), a, [b], c)
        assert first.sandwich_id == second.sandwich_id
        assert len(first.sandwich_id) == 36

        other_slot = SandwichInstance.create(101, key("Leader"), a, [b], c)
        assert other_slot.sandwich_id != first.sandwich_id

    def test_requires_victims(self, scenario_one) -> None:
        a, _, c = scenario_one
        with pytest.raises(ValidationError):
            SandwichInstance.create(100, key("Leader"), a, [], c)

    def test_requires_ordering(self, scenario_one) -> None:
        a, b, c = scenario_one
        with pytest.raises(ValidationError):
            SandwichInstance.create(100, key("Leader"), c, [b], a)

    def test_requires_shared_pool(self, make_swap) -> None:
        a = make_swap(1, "buy", pool="MarketA")
        b = make_swap(2, "buy", signer="Victim", pool="MarketB")
        c = make_swap(3, "sell", pool="MarketA")
        with pytest.raises(ValidationError):
            SandwichInstance.create(100, key("Leader"), a, [b], c)

    def test_audit_records_one_row_per_member(self, scenario_one) -> None:
        a, b, c = scenario_one
        instance = SandwichInstance.create(100, key("Leader"), a, [b], c)
        rows = instance.to_audit_records()
        assert [r["role"] for r in rows] == [SandwichRole.FRONTRUN, SandwichRole.VICTIM, SandwichRole.BACKRUN]
        assert {r["sandwich_id"] for r in rows} == {instance.sandwich_id}
        assert instance.attacker_signers == {key("X")}
        assert instance.victim_signatures == [b.signature]

    def test_estimate_victim_loss(self, make_swap) -> None:
        """Victim loss against reconstructed constant-product reserves."""
        # reserves 1_000_000 / 1_000_000, no fee
        front = make_swap(1, "buy", input_amount=10_000, output_amount=9_900)
        victim = make_swap(2, "buy", signer="Victim", wrapper=None, input_amount=10_000, output_amount=9_706)
        back = make_swap(3, "sell", input_amount=9_900, output_amount=10_000)
        instance = SandwichInstance.create(100, key("Leader"), front, [victim], back)

        loss = instance.estimate_victim_loss()
        assert loss is not None
        input_excess, output_shortfall = loss
        assert input_excess > 0
        assert 150 <= output_shortfall <= 250

    def test_estimate_victim_loss_degenerate(self, make_swap) -> None:
        """Proportional trades give no solvable reserve system."""
        front = make_swap(1, "buy", input_amount=100, output_amount=100)
        victim = make_swap(2, "buy", signer="Victim", input_amount=200, output_amount=200)
        back = make_swap(3, "sell", input_amount=100, output_amount=100)
        instance = SandwichInstance.create(100, key("Leader"), front, [victim], back)
        assert instance.estimate_victim_loss() is None

    def test_attacker_profit_wsol_input(self, make_swap) -> None:
        """Frontrun spends WSOL; leftover tokens are priced at the frontrun rate."""
        token = key("Token")
        front = make_swap(1, "buy", input_amount=1000, output_amount=500, input_mint=WSOL_MINT, output_mint=token)
        victim = make_swap(2, "buy", signer="Victim", wrapper=None, input_amount=10, output_amount=4)
        back = make_swap(3, "sell", input_amount=480, output_amount=1010, input_mint=token, output_mint=WSOL_MINT)
        instance = SandwichInstance.create(100, key("Leader"), front, [victim], back)

        assert instance.attacker_profit() == (10, 20)
        # 10 lamports + 20 tokens * (1000 / 500)
        assert instance.estimate_profit_lamports() == 50

        summary = instance.to_dict()
        assert summary["attacker_input_token_gain"] == 10
        assert summary["attacker_output_token_gain"] == 20
        assert summary["est_profit_lamports"] == 50
        assert {row["est_profit_lamports"] for row in instance.to_audit_records()} == {50}

    def test_attacker_profit_wsol_output(self, make_swap) -> None:
        """Frontrun sells tokens for WSOL; mints read from the backrun."""
        token = key("Token")
        front = make_swap(1, "sell", input_amount=500, output_amount=1000)
        victim = make_swap(2, "sell", signer="Victim", wrapper=None, input_amount=10, output_amount=19)
        back = make_swap(3, "buy", input_amount=990, output_amount=520, input_mint=WSOL_MINT, output_mint=token)
        instance = SandwichInstance.create(100, key("Leader"), front, [victim], back)

        assert instance.attacker_profit() == (20, 10)
        assert instance.estimate_profit_lamports() == 50

    def test_attacker_profit_unknown_mints(self, scenario_one) -> None:
        a, b, c = scenario_one
        instance = SandwichInstance.create(100, key("Leader"), a, [b], c)

        assert instance.attacker_profit() == (1, 1)
        assert instance.estimate_profit_lamports() is None
        assert instance.to_dict()["est_profit_lamports"] is None
        assert all(row["est_profit_lamports"] is None for row in instance.to_audit_records())

    def test_attacker_loss_is_negative(self, make_swap) -> None:
        front = make_swap(1, "buy", input_amount=1000, output_amount=500, input_mint=WSOL_MINT)
        victim = make_swap(2, "buy", signer="Victim", wrapper=None, input_amount=10, output_amount=4)
        back = make_swap(3, "sell", input_amount=500, output_amount=900)
        instance = SandwichInstance.create(100, key("Leader"), front, [victim], back)

        assert instance.attacker_profit() == (-100, 0)
        assert instance.estimate_profit_lamports() == -100


class TestValidatorModels:
    """Test suite for per-validator and cluster models."""

    def test_raw_counts_consistency(self) -> None:
        with pytest.raises(ValidationError):
            ValidatorRawCounts(
                identity=key("Leader"),
                slots_observed=4,
                raw_sandwich_inclusive_blocks=5,
                raw_sandwich_count=5,
            )

    def test_baseline_proportion_must_match(self) -> None:
        with pytest.raises(ValidationError):
            ClusterBaseline(
                total_blocks=100,
                sandwich_inclusive_blocks=10,
                proportion=0.5,
                mean_sandwiches_per_block=0.1,
                std_dev_sandwiches_per_block=0.3,
            )

    def test_metadata_ignores_extra_and_blank_vote(self) -> None:
        meta = ValidatorMetadata(identity=key("Leader"), vote_account="", name=" Solana Node ", website="x")
        assert meta.vote_account is None
        assert meta.name == "Solana Node"

    def test_report_record_columns(self) -> None:
        record = ValidatorReportRecord(
            identity=key("Leader"),
            vote_account=key("Vote"),
            name="node",
            sc=0.5,
            sc_p=0.25,
            sc_raw=5.0,
            sc_p_raw=2.5,
            slots=10,
            sc_p_lower=0.1,
            sc_p_upper=0.6,
            sc_lower=0.0,
            sc_upper=0.2,
            sc_p_flag=True,
            sc_flag=True,
        )
        assert list(record.to_dict()) == REPORT_COLUMNS
        assert len(REPORT_COLUMNS) == 14
        assert record.flagged
