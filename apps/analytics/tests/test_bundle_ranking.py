from __future__ import annotations

import uuid

from billing_analytics.bundles.ranking import filter_transitions_for_base_plans
from billing_analytics.bundles.schemas import SubscriptionTransition


_record_ids = iter(range(1, 10_000))


def _transition(bundle_id: uuid.UUID, subscription_id: uuid.UUID, event: str) -> SubscriptionTransition:
    return SubscriptionTransition(
        record_id=next(_record_ids),
        bundle_id=bundle_id,
        bundle_external_key=f"key-{bundle_id}",
        subscription_id=subscription_id,
        event=event,
    )


def test_example_scenario_ranks_and_keeps_latest() -> None:
    bundle_x, bundle_y, bundle_z = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    base_x, base_y, addon_z = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

    x_create = _transition(bundle_x, base_x, "START_ENTITLEMENT_BASE")
    y_create = _transition(bundle_y, base_y, "START_ENTITLEMENT_BASE")
    x_phase = _transition(bundle_x, base_x, "CHANGE_PHASE")
    z_create = _transition(bundle_z, addon_z, "START_ENTITLEMENT_ADD_ON")

    result = filter_transitions_for_base_plans([x_create, y_create, x_phase, z_create], {base_x, base_y})

    assert result.rank_for_bundle == {bundle_x: 1, bundle_y: 2}
    assert result.transition_for_bundle == {bundle_x: x_phase, bundle_y: y_create}


def test_interleaved_bundle_is_not_ranked_twice() -> None:
    bundles = [uuid.uuid4() for _ in range(3)]
    bases = [uuid.uuid4() for _ in range(3)]

    # b1 CREATE, b2 CREATE, b1 PHASE, b3 CREATE, b2 PHASE, b1 CANCEL
    order = [(0, "CREATE"), (1, "CREATE"), (0, "PHASE"), (2, "CREATE"), (1, "PHASE"), (0, "CANCEL")]
    transitions = [_transition(bundles[idx], bases[idx], event) for idx, event in order]

    result = filter_transitions_for_base_plans(transitions, set(bases))

    assert result.rank_for_bundle == {bundles[0]: 1, bundles[1]: 2, bundles[2]: 3}
    assert list(result.rank_for_bundle.values()) == [1, 2, 3]
    assert result.transition_for_bundle[bundles[0]].event == "CANCEL"
    assert result.transition_for_bundle[bundles[1]].event == "PHASE"
    assert result.transition_for_bundle[bundles[2]].event == "CREATE"


def test_rank_follows_input_order_not_bundle_id() -> None:
    low = uuid.UUID(int=1)
    high = uuid.UUID(int=2**100)
    base_low, base_high = uuid.uuid4(), uuid.uuid4()

    result = filter_transitions_for_base_plans(
        [_transition(high, base_high, "CREATE"), _transition(low, base_low, "CREATE")],
        {base_low, base_high},
    )

    assert result.rank_for_bundle == {high: 1, low: 2}


def test_non_base_transitions_never_affect_results() -> None:
    bundle = uuid.uuid4()
    base, addon = uuid.uuid4(), uuid.uuid4()
    other_bundle = uuid.uuid4()

    create = _transition(bundle, base, "CREATE")
    addon_change = _transition(bundle, addon, "ADD_ON_CHANGE")
    unrelated = _transition(other_bundle, uuid.uuid4(), "CREATE")

    result = filter_transitions_for_base_plans([unrelated, create, addon_change], {base})

    assert result.rank_for_bundle == {bundle: 1}
    assert result.transition_for_bundle == {bundle: create}


def test_consecutive_transitions_of_same_bundle_keep_single_rank() -> None:
    bundle = uuid.uuid4()
    base = uuid.uuid4()
    transitions = [_transition(bundle, base, event) for event in ("CREATE", "PHASE", "CHANGE", "CANCEL")]

    result = filter_transitions_for_base_plans(transitions, {base})

    assert result.rank_for_bundle == {bundle: 1}
    assert result.transition_for_bundle[bundle] is transitions[-1]


def test_empty_inputs_produce_empty_maps() -> None:
    assert filter_transitions_for_base_plans([], set()).rank_for_bundle == {}

    bundle, base = uuid.uuid4(), uuid.uuid4()
    result = filter_transitions_for_base_plans([_transition(bundle, base, "CREATE")], set())
    assert result.rank_for_bundle == {}
    assert result.transition_for_bundle == {}
