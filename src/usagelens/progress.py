"""
Progress estimation for a parallel scan whose total size is unknown.

Two signals are blended: the share of segments that finished, and the
share of the extrapolated total record count already merged. Early on
the segment ratio dominates since the extrapolation is noisy; the
weight shifts toward the data ratio as more segments report, never
below 0.2 for the segment ratio.
"""

# highest value reported before the run is complete
PROGRESS_CEILING = 98
# relative change needed before the extrapolated total is replaced
ESTIMATE_JITTER_THRESHOLD = 0.05
MIN_SEGMENT_WEIGHT = 0.2


class ProgressEstimator:
    """
    ProgressEstimator turns (completed segments, merged records) into a
    0-100 integer. Reported values never decrease, stay at or below
    PROGRESS_CEILING until every segment is done, and are exactly 100
    once it is.
    """

    def __init__(self, total_segments: "int") -> "None":
        if total_segments < 1:
            raise ValueError("total_segments must be positive")
        self._total_segments = total_segments
        self.estimated_total: "int" = 0
        self.progress: "int" = 0
        self._has_estimate = False

    def update(self, completed_segments: "int", merged_count: "int") -> "int":
        if completed_segments >= self._total_segments:
            self.estimated_total = merged_count
            self.progress = 100
            return self.progress

        self._update_estimate(completed_segments, merged_count)

        segment_ratio = completed_segments / self._total_segments
        if self.estimated_total > 0:
            data_ratio = min(1.0, merged_count / self.estimated_total)
        else:
            data_ratio = segment_ratio

        segment_weight = max(MIN_SEGMENT_WEIGHT, 1 - segment_ratio)
        blended = segment_ratio * segment_weight + data_ratio * (1 - segment_weight)
        candidate = round(blended * 100)

        self.progress = min(PROGRESS_CEILING, max(self.progress, candidate))
        return self.progress

    def _update_estimate(
        self, completed_segments: "int", merged_count: "int"
    ) -> "None":
        if completed_segments <= 0:
            return

        candidate = round(merged_count / completed_segments * self._total_segments)
        if not self._has_estimate or self.estimated_total == 0:
            self.estimated_total = candidate
            self._has_estimate = True
        elif (
            abs(candidate - self.estimated_total) / self.estimated_total
            > ESTIMATE_JITTER_THRESHOLD
        ):
            self.estimated_total = candidate

        # never report fewer expected records than already merged
        self.estimated_total = max(self.estimated_total, merged_count)
