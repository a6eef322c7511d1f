from __future__ import annotations

import pandas as pd
import pytest

from clinic_insights.analytics.age_bins import DEFAULT_AGE_BINS, AgeBin, age_group_labels
from clinic_insights.analytics.crosstab import (
    aggregate,
    breakdown,
    label_pairs,
    percent_of_grand_total,
    percent_within_row,
    percentage,
)

NOW = pd.Timestamp("2024-03-10")


def _visits() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "gender": ["Male"] * 6 + ["Female"] * 4,
            "age": [22, 24, 31, 40, 55, 19, 23, 33, 41, 60],
        }
    )


def _age_key(bins=DEFAULT_AGE_BINS):
    return lambda frame: age_group_labels(frame, bins, NOW)


def test_gender_by_age_group_counts_and_totals() -> None:
    labels = [b.label for b in DEFAULT_AGE_BINS]
    result = aggregate(_visits(), "gender", _age_key(), col_domain=labels)

    assert result.row_labels == ("Male", "Female")
    assert result.col_labels == tuple(labels)
    male = dict(zip(result.col_labels, result.matrix[result.row_index("Male")]))
    assert male == {
        "<20": 1,
        "20-25": 2,
        "25-30": 0,
        "30-35": 1,
        "35-40": 0,
        "40-45": 1,
        "45-50": 0,
        "50>": 1,
    }
    assert result.row_totals == (6, 4)
    assert result.grand_total == 10
    assert result.n_records == 10


def test_breakdown_is_sorted_with_row_percentages() -> None:
    result = aggregate(_visits(), "gender", _age_key())

    entries = breakdown(result, "Male")

    assert entries[0].label == "20-25"
    assert entries[0].count == 2
    assert entries[0].percentage == 33.3
    assert [entry.count for entry in entries] == sorted(
        (entry.count for entry in entries), reverse=True
    )


def test_breakdown_ties_keep_column_order() -> None:
    result = aggregate(_visits(), "gender", _age_key())

    tied = [entry.label for entry in breakdown(result, "Male") if entry.count == 1]

    assert tied == [label for label in result.col_labels if label in tied]


def test_breakdown_of_empty_row_is_zero_not_nan() -> None:
    result = aggregate(_visits(), "gender", "gender", row_domain=["Male", "Other"])

    entries = breakdown(result, "Other")

    assert all(entry.percentage == 0 for entry in entries)
    assert result.row_totals[result.row_index("Other")] == 0


def test_breakdown_unknown_row_raises_key_error() -> None:
    result = aggregate(_visits(), "gender", "gender")

    with pytest.raises(KeyError):
        breakdown(result, "Nobody")


def test_overlapping_bins_count_a_visit_in_every_matching_bin() -> None:
    bins = [AgeBin("bin-1", 18.0, 40.0), AgeBin("bin-2", 30.0, 50.0)]
    df = pd.DataFrame({"gender": ["Male", "Male"], "age": [35, 20]})

    result = aggregate(df, "gender", _age_key(bins))

    assert result.matrix == ((2, 1),)
    assert result.grand_total == 3
    assert result.n_records == 2


def test_visits_without_labels_are_dropped() -> None:
    df = pd.DataFrame({"gender": ["Male", None, "Female", ""], "area": ["A", "B", None, "C"]})

    pairs = label_pairs(df, "gender", "area")

    assert pairs.to_dict("records") == [{"row": "Male", "col": "A"}]


def test_label_pairs_ignores_duplicate_index_labels() -> None:
    df = pd.DataFrame({"gender": ["Male", "Female"], "area": ["A", "B"]}, index=[7, 7])

    pairs = label_pairs(df, "gender", "area")

    assert sorted(map(tuple, pairs.to_numpy().tolist())) == [("Female", "B"), ("Male", "A")]


def test_aggregate_empty_dataset_is_zero_filled() -> None:
    empty = pd.DataFrame({"gender": pd.Series(dtype=str), "day_of_week": pd.Series(dtype=str)})

    result = aggregate(empty, "gender", "day_of_week", col_domain=["Monday"], row_domain=["Male"])

    assert result.matrix == ((0,),)
    assert result.row_totals == (0,)
    assert result.grand_total == 0
    assert percent_of_grand_total(result) == ((0.0,),)


def test_totals_invariant_holds_for_random_frames() -> None:
    rows = ["a", "b", "c"]
    df = pd.DataFrame(
        {
            "r": [rows[i % 3] for i in range(50)],
            "c": [str(i % 7) for i in range(50)],
        }
    )

    result = aggregate(df, "r", "c")

    assert all(sum(row) == total for row, total in zip(result.matrix, result.row_totals))
    assert sum(result.row_totals) == result.grand_total == 50


def test_percent_modes_use_row_and_grand_totals() -> None:
    df = pd.DataFrame({"r": ["x", "x", "x", "y"], "c": ["p", "p", "q", "q"]})
    result = aggregate(df, "r", "c")

    assert percent_within_row(result) == ((66.7, 33.3), (0.0, 100.0))
    assert percent_of_grand_total(result) == ((50.0, 25.0), (0.0, 25.0))


def test_percentage_guards_zero_total() -> None:
    assert percentage(3, 0) == 0.0
    assert percentage(1, 3, decimals=2) == 33.33


def test_to_frame_includes_row_totals() -> None:
    result = aggregate(pd.DataFrame({"r": ["x", "y"], "c": ["p", "p"]}), "r", "c")

    frame = result.to_frame()

    assert frame.loc["x", "p"] == 1
    assert frame["row_total"].tolist() == [1, 1]
    assert len(result.to_long_frame()) == 2
