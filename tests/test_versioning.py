from __future__ import annotations

import threading

from clinic_insights.analytics.versioning import RequestVersions


def test_stale_result_is_discarded() -> None:
    versions = RequestVersions()
    first = versions.issue("gender")
    second = versions.issue("gender")

    assert versions.apply("gender", second, "new")
    assert not versions.apply("gender", first, "old")
    assert versions.result("gender") == "new"


def test_versions_are_tracked_per_widget_key() -> None:
    versions = RequestVersions()
    gender = versions.issue("gender")
    versions.issue("age")

    assert versions.is_latest("gender", gender)
    assert versions.latest("age") == 1
    assert versions.result("age") is None
    assert not versions.is_latest("location", 1)


def test_issue_is_monotonic_across_threads() -> None:
    versions = RequestVersions()
    issued: list[int] = []
    lock = threading.Lock()

    def _issue() -> None:
        for _ in range(100):
            version = versions.issue("trends")
            with lock:
                issued.append(version)

    threads = [threading.Thread(target=_issue) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(issued) == list(range(1, 401))
    assert versions.latest("trends") == 400
