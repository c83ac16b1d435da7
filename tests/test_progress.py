import pytest

from usagelens.progress import PROGRESS_CEILING, ProgressEstimator


class TestProgressEstimator:
    def test_first_completion_sets_estimate(self) -> "None":
        estimator = ProgressEstimator(total_segments=10)
        estimator.update(completed_segments=1, merged_count=50)
        assert estimator.estimated_total == 500

    def test_small_changes_keep_estimate(self) -> "None":
        estimator = ProgressEstimator(total_segments=10)
        estimator.update(1, 100)
        # 2 segments averaging 102 -> 1020, within 5% of 1000
        estimator.update(2, 204)
        assert estimator.estimated_total == 1000

    def test_large_changes_replace_estimate(self) -> "None":
        estimator = ProgressEstimator(total_segments=10)
        estimator.update(1, 100)
        estimator.update(2, 300)
        assert estimator.estimated_total == 1500

    def test_estimate_never_below_merged(self) -> "None":
        estimator = ProgressEstimator(total_segments=4)
        estimator.update(1, 0)
        estimator.update(2, 10)
        assert estimator.estimated_total >= 10

    def test_complete_reports_exactly_100(self) -> "None":
        estimator = ProgressEstimator(total_segments=3)
        estimator.update(1, 10)
        estimator.update(2, 20)
        assert estimator.update(3, 31) == 100
        assert estimator.estimated_total == 31

    def test_ceiling_before_completion(self) -> "None":
        estimator = ProgressEstimator(total_segments=100)
        # all data already arrived through the first 99 segments
        for completed in range(1, 100):
            progress = estimator.update(completed, 1000)
            assert progress <= PROGRESS_CEILING

    def test_monotonic_under_uneven_segments(self) -> "None":
        estimator = ProgressEstimator(total_segments=8)
        yields = [500, 0, 0, 3, 900, 1, 0, 40]
        merged = 0
        seen = []
        for completed, count in enumerate(yields, start=1):
            merged += count
            seen.append(estimator.update(completed, merged))

        assert seen == sorted(seen)
        assert seen[-1] == 100
        assert all(value < 99 for value in seen[:-1])

    def test_zero_yield_run(self) -> "None":
        estimator = ProgressEstimator(total_segments=2)
        assert estimator.update(1, 0) == 50
        assert estimator.update(2, 0) == 100

    def test_rejects_zero_segments(self) -> "None":
        with pytest.raises(ValueError):
            ProgressEstimator(total_segments=0)
