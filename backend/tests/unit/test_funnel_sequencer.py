"""
Unit tests for funnel step sequencing.
"""
import pytest

from src.models.campaign_parts import Funnel, FunnelStep, FunnelStepType, StepMetrics
from src.services.funnel_sequencer import (
    add_step,
    is_valid_reorder,
    next_step,
    ordered_steps,
    remove_step,
    reorder,
    update_step,
)


@pytest.fixture
def funnel():
    """Welcome email -> wait -> follow-up SMS."""
    result = Funnel(name="Onboarding")
    result = add_step(result, FunnelStep(name="Welcome", type=FunnelStepType.EMAIL, content="Hi {{name}}"))
    result = add_step(result, FunnelStep(name="Wait a day", type=FunnelStepType.WAIT, delay=24))
    result = add_step(result, FunnelStep(name="Follow up", type=FunnelStepType.SMS))
    return result


def names(funnel):
    return [s.name for s in ordered_steps(funnel)]


def orders(funnel):
    return sorted(s.order for s in funnel.steps)


@pytest.mark.unit
def test_add_step_appends_with_dense_order(funnel):
    """Test steps are numbered 0..N-1 in insertion order."""
    assert names(funnel) == ["Welcome", "Wait a day", "Follow up"]
    assert orders(funnel) == [0, 1, 2]


@pytest.mark.unit
def test_add_step_assigns_fresh_id(funnel):
    """Test a step keeps no caller-supplied id."""
    step = FunnelStep(id="step-fixed", name="Task", type=FunnelStepType.TASK)

    first = add_step(funnel, step)
    second = add_step(first, step)

    ids = [s.id for s in second.steps]
    assert "step-fixed" not in ids
    assert len(set(ids)) == 5


@pytest.mark.unit
def test_reorder_renumbers_every_step(funnel):
    """Test a full permutation becomes the new order."""
    ids = [s.id for s in ordered_steps(funnel)]

    result = reorder(funnel, [ids[2], ids[0], ids[1]])

    assert names(result) == ["Follow up", "Welcome", "Wait a day"]
    assert orders(result) == [0, 1, 2]
    assert names(funnel) == ["Welcome", "Wait a day", "Follow up"]


@pytest.mark.unit
@pytest.mark.parametrize(
    "pick",
    [
        lambda ids: ids[:2],
        lambda ids: [ids[0], ids[0], ids[1]],
        lambda ids: [ids[0], ids[1], "step-unknown"],
        lambda ids: ids + ["step-extra"],
    ],
    ids=["partial", "duplicate", "unknown", "extra"],
)
def test_invalid_reorder_leaves_funnel_unchanged(funnel, pick):
    """Test partial, duplicated or unknown id lists are rejected."""
    ids = [s.id for s in ordered_steps(funnel)]

    assert is_valid_reorder(funnel, pick(ids)) is False
    assert names(reorder(funnel, pick(ids))) == names(funnel)


@pytest.mark.unit
def test_remove_step_closes_gap(funnel):
    """Test deleting a middle step renumbers the rest."""
    wait_id = ordered_steps(funnel)[1].id

    result = remove_step(funnel, wait_id)

    assert names(result) == ["Welcome", "Follow up"]
    assert orders(result) == [0, 1]


@pytest.mark.unit
def test_remove_unknown_step_is_ignored(funnel):
    """Test removing a missing step changes nothing."""
    assert names(remove_step(funnel, "step-missing")) == names(funnel)


@pytest.mark.unit
def test_update_step_ignores_protected_fields(funnel):
    """Test id, order and metrics cannot be overwritten through update."""
    step = ordered_steps(funnel)[0]

    result = update_step(
        funnel,
        step.id,
        {
            "name": "Welcome aboard",
            "id": "step-hijack",
            "order": 7,
            "metrics": StepMetrics(sent=99).model_dump(),
        },
    )

    updated = result.find(step.id)
    assert updated.name == "Welcome aboard"
    assert updated.order == 0
    assert updated.metrics.sent == 0
    assert result.find("step-hijack") is None


@pytest.mark.unit
def test_update_step_revalidates(funnel):
    """Test an update producing an invalid step raises."""
    step = ordered_steps(funnel)[1]

    with pytest.raises(ValueError):
        update_step(funnel, step.id, {"delay": -1})


@pytest.mark.unit
def test_next_step_walks_the_funnel(funnel):
    """Test next_step follows order and stops at the end."""
    first = next_step(funnel)
    second = next_step(funnel, first.id)
    third = next_step(funnel, second.id)

    assert [first.name, second.name, third.name] == ["Welcome", "Wait a day", "Follow up"]
    assert next_step(funnel, third.id) is None
    assert next_step(funnel, "step-missing") is None
    assert next_step(Funnel()) is None
