from __future__ import annotations

import uuid
from collections.abc import Iterable, Set
from dataclasses import dataclass, field

from billing_analytics.bundles.schemas import SubscriptionTransition


@dataclass(slots=True)
class RankedTransitions:
    rank_for_bundle: dict[uuid.UUID, int] = field(default_factory=dict)
    transition_for_bundle: dict[uuid.UUID, SubscriptionTransition] = field(default_factory=dict)


def filter_transitions_for_base_plans(
    sorted_transitions: Iterable[SubscriptionTransition],
    base_subscription_ids: Set[uuid.UUID],
) -> RankedTransitions:
    """Rank bundles by first appearance and keep each bundle's latest base transition.

    Transitions are sorted by event order but not grouped by bundle, e.g.
    ``b1 CREATE, b2 CREATE, b1 PHASE, b3 CREATE, b2 PHASE``, so a bundle showing
    up again after another one must not be ranked twice.
    """
    result = RankedTransitions()
    last_bundle_id: uuid.UUID | None = None
    last_bundle_rank = 0

    for transition in sorted_transitions:
        if transition.subscription_id not in base_subscription_ids:
            continue

        bundle_id = transition.bundle_id
        if last_bundle_id is None or (bundle_id != last_bundle_id and bundle_id not in result.rank_for_bundle):
            last_bundle_rank += 1
            last_bundle_id = bundle_id
            result.rank_for_bundle[bundle_id] = last_bundle_rank

        # Last entry wins: it carries the current state of the bundle
        result.transition_for_bundle[bundle_id] = transition

    return result
