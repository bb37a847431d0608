"""
A/B test allocation balancing.

Variant allocations are integer percentages that always sum to 100 with
every variant at or above the configured floor. All functions work on
copies: the caller's variants are never mutated, and bad input (unknown
variant id, degenerate totals) yields an unchanged copy plus a warning so
batch callers never halt on one bad campaign.
"""
import hashlib
from typing import List, Optional, Sequence

from src.lib.logging import get_logger
from src.lib.settings import settings
from src.models.campaign_parts import ABTest, Content, Variant, new_part_id

logger = get_logger(__name__)


def _copy(variants: Sequence[Variant]) -> List[Variant]:
    return [v.model_copy(deep=True) for v in variants]


def _settle_residual(candidates: List[Variant], total: int, floor: int) -> None:
    """
    Push ``100 - total`` onto the largest candidates.

    Positive residuals go to the largest candidate. Negative residuals are
    taken from the largest first, spilling to the next largest rather than
    dropping anyone below the floor.
    """
    residual = 100 - total
    for variant in sorted(candidates, key=lambda v: v.allocation, reverse=True):
        if residual == 0:
            break
        if residual > 0:
            variant.allocation += residual
            residual = 0
        else:
            take = min(variant.allocation - floor, -residual)
            if take > 0:
                variant.allocation -= take
                residual += take


def rebalance(
    variants: Sequence[Variant],
    changed_id: str,
    new_value: int,
    floor: Optional[int] = None,
    ceiling: Optional[int] = None,
) -> List[Variant]:
    """
    Set one variant's allocation and rescale the others to keep a 100% total.

    Args:
        variants: Current variants
        changed_id: Variant whose allocation is being set
        new_value: Requested allocation, clamped into the allowed range
        floor: Minimum allocation per variant (default from settings)
        ceiling: Maximum allocation for the changed variant (default from settings)

    Returns:
        New list of variants in the original order
    """
    floor = settings.allocation_floor if floor is None else floor
    ceiling = settings.allocation_ceiling if ceiling is None else ceiling

    result = _copy(variants)
    target = next((v for v in result if v.id == changed_id), None)
    if target is None:
        logger.warning(f"Rebalance ignored: unknown variant '{changed_id}'")
        return result
    if len(result) < 2:
        logger.warning("Rebalance ignored: fewer than two variants")
        return result

    others = [v for v in result if v.id != changed_id]
    upper = min(ceiling, 100 - floor * len(others))
    new_value = max(floor, min(upper, int(new_value)))

    others_total = sum(v.allocation for v in others)
    if others_total <= 0:
        logger.warning(f"Rebalance ignored: other variants total {others_total}")
        return result

    # alloc * (1 - delta / othersTotal), floored, in integer arithmetic
    delta = new_value - target.allocation
    for variant in others:
        variant.allocation = max(floor, variant.allocation * (others_total - delta) // others_total)

    target.allocation = new_value
    _settle_residual(others, sum(v.allocation for v in result), floor)

    return result


def can_add_variant(ab_test: ABTest, max_variants: Optional[int] = None) -> bool:
    max_variants = settings.max_variants if max_variants is None else max_variants
    return len(ab_test.variants) < max_variants


def can_remove_variant(ab_test: ABTest) -> bool:
    """At least two variants must remain after a removal."""
    return len(ab_test.variants) > 2


def default_variants(base: Optional[Content] = None) -> List[Variant]:
    """Control/challenger pair a fresh A/B test starts from."""
    base = base or Content()
    return [
        Variant(id="variant-a", name="Variant A (Control)", content=base.model_copy(), allocation=50),
        Variant(id="variant-b", name="Variant B", content=base.model_copy(), allocation=50),
    ]


def add_variant(
    ab_test: ABTest,
    name: Optional[str] = None,
    content: Optional[Content] = None,
    max_variants: Optional[int] = None,
) -> ABTest:
    """
    Append a variant and split traffic evenly across all of them.

    Every variant gets ``floor(100 / n)`` and the remainder goes to the first.
    At the variant limit the test is returned unchanged.
    """
    result = ab_test.model_copy(deep=True)
    if not can_add_variant(result, max_variants):
        logger.warning(f"Add variant ignored: already {len(result.variants)} variants")
        return result

    letter = chr(ord("A") + len(result.variants))
    result.variants.append(
        Variant(
            id=new_part_id("variant"),
            name=name or f"Variant {letter}",
            content=content or Content(),
            allocation=0,
        )
    )

    share = 100 // len(result.variants)
    for variant in result.variants:
        variant.allocation = share
    result.variants[0].allocation += 100 - share * len(result.variants)

    return result


def remove_variant(ab_test: ABTest, variant_id: str, floor: Optional[int] = None) -> ABTest:
    """
    Drop a variant and scale the survivors back up to 100.

    Survivors are multiplied by ``100 / remainingTotal`` and floored; the
    remainder goes to the first survivor. A removed winner is cleared.
    """
    floor = settings.allocation_floor if floor is None else floor

    result = ab_test.model_copy(deep=True)
    if result.find(variant_id) is None:
        logger.warning(f"Remove variant ignored: unknown variant '{variant_id}'")
        return result
    if not can_remove_variant(result):
        logger.warning("Remove variant ignored: at least two variants must remain")
        return result

    survivors = [v for v in result.variants if v.id != variant_id]
    remaining_total = sum(v.allocation for v in survivors)

    if remaining_total > 0:
        for variant in survivors:
            variant.allocation = max(floor, variant.allocation * 100 // remaining_total)
    else:
        for variant in survivors:
            variant.allocation = 100 // len(survivors)

    residual = 100 - sum(v.allocation for v in survivors)
    if residual >= 0:
        survivors[0].allocation += residual
    else:
        _settle_residual(survivors, 100 - residual, floor)

    result.variants = survivors
    if result.winning_variant == variant_id:
        result.winning_variant = None

    return result


def declare_winner(ab_test: ABTest, variant_id: str) -> ABTest:
    """Mark a variant as the winner; unknown ids leave the test unchanged."""
    result = ab_test.model_copy(deep=True)
    if result.find(variant_id) is None:
        logger.warning(f"Declare winner ignored: unknown variant '{variant_id}'")
        return result
    result.winning_variant = variant_id
    return result


def pick_variant(ab_test: ABTest, recipient_key: str, campaign_id: str) -> Optional[Variant]:
    """
    Choose the variant a recipient sees.

    A declared winner takes all traffic. Otherwise a hash of
    ``recipient:campaign`` picks a bucket 0-99 over the cumulative
    allocations, so a recipient always lands in the same variant.

    Returns:
        Variant, or None if the test is disabled or has no variants
    """
    if not ab_test.enabled or not ab_test.variants:
        return None

    if ab_test.winning_variant:
        winner = ab_test.find(ab_test.winning_variant)
        if winner is not None:
            return winner

    ordered = sorted(ab_test.variants, key=lambda v: v.id)
    digest = hashlib.md5(f"{recipient_key}:{campaign_id}".encode()).hexdigest()
    bucket = int(digest, 16) % 100

    cumulative = 0
    for variant in ordered:
        cumulative += variant.allocation
        if bucket < cumulative:
            return variant

    return ordered[-1]


def allocation_problems(variants: Sequence[Variant], floor: Optional[int] = None) -> List[str]:
    """Human-readable invariant violations; empty when the set is consistent."""
    floor = settings.allocation_floor if floor is None else floor
    problems = []
    total = sum(v.allocation for v in variants)
    if variants and total != 100:
        problems.append(f"allocations sum to {total}, expected 100")
    for variant in variants:
        if variant.allocation < floor:
            problems.append(f"variant '{variant.id}' below floor ({variant.allocation} < {floor})")
    return problems
