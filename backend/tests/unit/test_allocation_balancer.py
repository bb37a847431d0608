"""
Unit tests for A/B allocation balancing.
"""
import pytest

from src.models.campaign_parts import ABTest, Content, Variant
from src.services.allocation_balancer import (
    add_variant,
    allocation_problems,
    can_add_variant,
    can_remove_variant,
    declare_winner,
    default_variants,
    pick_variant,
    rebalance,
    remove_variant,
)

FLOOR = 5
CEILING = 95


def variants(*allocations):
    return [
        Variant(id=f"variant-{chr(ord('a') + i)}", name=f"Variant {chr(ord('A') + i)}", allocation=a)
        for i, a in enumerate(allocations)
    ]


def allocations(items):
    return [v.allocation for v in items]


def assert_consistent(items):
    assert sum(allocations(items)) == 100
    assert all(v.allocation >= FLOOR for v in items)


# ============================================================================
# Test: rebalance
# ============================================================================


@pytest.mark.unit
def test_rebalance_two_variants():
    """Test raising one side of a 50/50 split shrinks the other."""
    result = rebalance(variants(50, 50), "variant-a", 80, floor=FLOOR, ceiling=CEILING)

    assert allocations(result) == [80, 20]


@pytest.mark.unit
def test_rebalance_scales_others_proportionally():
    """Test the other variants shrink in proportion to their share."""
    result = rebalance(variants(34, 33, 33), "variant-a", 50, floor=FLOOR, ceiling=CEILING)

    assert allocations(result) == [50, 25, 25]


@pytest.mark.unit
def test_rebalance_clamps_to_ceiling_and_floor():
    """Test requests outside the allowed range are clamped."""
    high = rebalance(variants(50, 50), "variant-a", 100, floor=FLOOR, ceiling=CEILING)
    low = rebalance(variants(50, 50), "variant-a", 0, floor=FLOOR, ceiling=CEILING)

    assert allocations(high) == [95, 5]
    assert allocations(low) == [5, 95]


@pytest.mark.unit
def test_rebalance_leaves_room_for_every_other_variant():
    """Test the changed variant cannot squeeze others below the floor."""
    result = rebalance(variants(25, 25, 25, 25), "variant-a", 95, floor=FLOOR, ceiling=CEILING)

    assert allocations(result) == [85, 5, 5, 5]


@pytest.mark.unit
def test_rebalance_floor_overshoot_is_taken_from_largest():
    """Test floored variants push the excess onto the largest other variant."""
    result = rebalance(variants(90, 5, 5), "variant-b", 50, floor=FLOOR, ceiling=CEILING)

    assert allocations(result) == [45, 50, 5]


@pytest.mark.unit
@pytest.mark.parametrize("start", [(50, 50), (34, 33, 33), (70, 20, 10), (25, 25, 25, 25), (90, 5, 5)])
def test_rebalance_keeps_total_and_floor(start):
    """Test every requested value leaves a consistent allocation."""
    items = variants(*start)
    for changed in items:
        for requested in range(-10, 111, 7):
            result = rebalance(items, changed.id, requested, floor=FLOOR, ceiling=CEILING)
            assert_consistent(result)


@pytest.mark.unit
def test_rebalance_unknown_variant_returns_copy():
    """Test an unknown id changes nothing and never mutates the input."""
    original = variants(60, 40)

    result = rebalance(original, "variant-z", 90, floor=FLOOR, ceiling=CEILING)

    assert allocations(result) == [60, 40]
    assert result[0] is not original[0]


@pytest.mark.unit
def test_rebalance_does_not_mutate_input():
    """Test the caller's variants are untouched."""
    original = variants(50, 50)

    rebalance(original, "variant-a", 70, floor=FLOOR, ceiling=CEILING)

    assert allocations(original) == [50, 50]


@pytest.mark.unit
def test_rebalance_single_variant_is_ignored():
    """Test there is nothing to balance against with one variant."""
    assert allocations(rebalance(variants(100), "variant-a", 40)) == [100]


# ============================================================================
# Test: adding and removing variants
# ============================================================================


@pytest.mark.unit
def test_default_variants_split_evenly():
    """Test a new A/B test starts as a 50/50 control/challenger pair."""
    pair = default_variants(Content(subject="Hi", body="Body"))

    assert [v.name for v in pair] == ["Variant A (Control)", "Variant B"]
    assert allocations(pair) == [50, 50]
    assert pair[1].content.subject == "Hi"


@pytest.mark.unit
def test_add_variant_resplits_evenly():
    """Test adding a third variant gives 34/33/33 with the remainder first."""
    ab_test = ABTest(enabled=True, variants=default_variants())

    result = add_variant(ab_test)

    assert allocations(result.variants) == [34, 33, 33]
    assert result.variants[-1].name == "Variant C"
    assert allocations(ab_test.variants) == [50, 50]


@pytest.mark.unit
def test_add_variant_respects_limit():
    """Test the variant limit blocks further additions."""
    ab_test = ABTest(enabled=True, variants=variants(20, 20, 20, 20, 20))

    assert can_add_variant(ab_test, max_variants=5) is False
    assert len(add_variant(ab_test, max_variants=5).variants) == 5


@pytest.mark.unit
def test_remove_variant_rescales_survivors():
    """Test removing B from 40/30/30 gives 58/42."""
    ab_test = ABTest(enabled=True, variants=variants(40, 30, 30))

    result = remove_variant(ab_test, "variant-b", floor=FLOOR)

    assert [v.id for v in result.variants] == ["variant-a", "variant-c"]
    assert allocations(result.variants) == [58, 42]


@pytest.mark.unit
def test_remove_variant_keeps_two():
    """Test a two-variant test cannot lose a variant."""
    ab_test = ABTest(enabled=True, variants=variants(50, 50))

    assert can_remove_variant(ab_test) is False
    assert len(remove_variant(ab_test, "variant-a").variants) == 2


@pytest.mark.unit
def test_remove_winner_clears_winner():
    """Test removing the declared winner resets the winner."""
    ab_test = ABTest(enabled=True, variants=variants(40, 30, 30), winning_variant="variant-c")

    result = remove_variant(ab_test, "variant-c", floor=FLOOR)

    assert result.winning_variant is None
    assert_consistent(result.variants)


# ============================================================================
# Test: winner and variant selection
# ============================================================================


@pytest.mark.unit
def test_declare_winner_unknown_variant_is_ignored():
    """Test declaring a missing variant leaves the test unchanged."""
    ab_test = ABTest(enabled=True, variants=variants(50, 50))

    assert declare_winner(ab_test, "variant-x").winning_variant is None
    assert declare_winner(ab_test, "variant-b").winning_variant == "variant-b"


@pytest.mark.unit
def test_pick_variant_disabled_returns_none():
    """Test no variant is picked while the test is off."""
    ab_test = ABTest(enabled=False, variants=variants(50, 50))

    assert pick_variant(ab_test, "lead-1", "campaign-1") is None


@pytest.mark.unit
def test_pick_variant_is_sticky():
    """Test a recipient always lands in the same variant."""
    ab_test = ABTest(enabled=True, variants=variants(50, 50))

    first = pick_variant(ab_test, "lead-1", "campaign-1")
    assert all(pick_variant(ab_test, "lead-1", "campaign-1").id == first.id for _ in range(5))


@pytest.mark.unit
def test_pick_variant_follows_allocation():
    """Test a variant with all the traffic is always picked."""
    ab_test = ABTest(enabled=True, variants=variants(100, 0))

    picked = {pick_variant(ab_test, f"lead-{i}", "campaign-1").id for i in range(50)}

    assert picked == {"variant-a"}


@pytest.mark.unit
def test_pick_variant_winner_takes_all():
    """Test a declared winner receives every recipient."""
    ab_test = ABTest(enabled=True, variants=variants(95, 5), winning_variant="variant-b")

    picked = {pick_variant(ab_test, f"lead-{i}", "campaign-1").id for i in range(20)}

    assert picked == {"variant-b"}


@pytest.mark.unit
def test_allocation_problems():
    """Test invariant violations are reported."""
    assert allocation_problems(variants(50, 50), floor=FLOOR) == []

    problems = allocation_problems(variants(97, 2), floor=FLOOR)
    assert any("floor" in p for p in problems)
    assert any("sum to 99" in p for p in problems)
