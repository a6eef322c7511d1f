from __future__ import annotations

import pandas as pd
import pytest

from clinic_insights.analytics.ranking import (
    UNKNOWN_LABEL,
    rank,
    ranked_to_frame,
    rest_to_all,
    top_k,
)


def _areas() -> pd.DataFrame:
    return pd.DataFrame(
        {"area": ["Indiranagar", "Koramangala", "Indiranagar", "HSR", "Koramangala", "Whitefield", None]}
    )


def test_rank_sorts_descending_and_keeps_first_seen_order_for_ties() -> None:
    ranked = rank(_areas(), "area")

    assert [(c.label, c.count) for c in ranked] == [
        ("Indiranagar", 2),
        ("Koramangala", 2),
        ("HSR", 1),
        ("Whitefield", 1),
        (UNKNOWN_LABEL, 1),
    ]


def test_rank_percentages_use_all_labelled_visits() -> None:
    ranked = rank(_areas(), "area")

    assert ranked[0].percentage == 28.6
    assert sum(c.count for c in ranked) == 7


def test_top_k_is_prefix_of_rest_to_all() -> None:
    ranked = rank(_areas(), "area")

    top = top_k(ranked, 3)

    assert top == rest_to_all(ranked)[:3]
    assert top_k(ranked, 50) == rest_to_all(ranked)
    assert top_k(ranked, 0) == []


def test_top_k_rejects_negative_k() -> None:
    with pytest.raises(ValueError):
        top_k([], -1)


def test_rank_seeds_domain_with_zero_counts() -> None:
    df = pd.DataFrame({"discovery_channel": ["Google", "Google", "Instagram"]})

    ranked = rank(df, "discovery_channel", domain=["Friends and Family", "Google", "Instagram"])

    assert [(c.label, c.count) for c in ranked] == [
        ("Google", 2),
        ("Instagram", 1),
        ("Friends and Family", 0),
    ]
    assert ranked[-1].percentage == 0.0


def test_rank_blank_labels_become_unknown() -> None:
    df = pd.DataFrame({"appointment_type": ["  ", "Booking", float("nan")]})

    ranked = rank(df, "appointment_type")

    assert ranked[0].label == UNKNOWN_LABEL
    assert ranked[0].count == 2


def test_rank_list_labels_count_each_member() -> None:
    df = pd.DataFrame({"age": [1, 2]})

    ranked = rank(df, lambda frame: pd.Series([["<20", "<35"], []], index=frame.index))

    assert {(c.label, c.count) for c in ranked} == {("<20", 1), ("<35", 1), (UNKNOWN_LABEL, 1)}


def test_rank_empty_dataset() -> None:
    ranked = rank(pd.DataFrame({"gender": []}), "gender", domain=["Male", "Female"])

    assert [(c.label, c.count, c.percentage) for c in ranked] == [
        ("Male", 0, 0.0),
        ("Female", 0, 0.0),
    ]
    assert ranked_to_frame(ranked)["count"].tolist() == [0, 0]


def test_rank_ties_follow_input_order_not_domain_order() -> None:
    df = pd.DataFrame({"gender": ["Female", "Male"]})

    ranked = rank(df, "gender", domain=["Male", "Female", "Other"])

    assert [(c.label, c.count) for c in ranked] == [("Female", 1), ("Male", 1), ("Other", 0)]
