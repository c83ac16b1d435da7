from typing import Any, Protocol

from usagelens.models import ScanPage


class UsageStore(Protocol):
    """
    UsageStore stands as the common protocol that every
    usage-record backend must satisfy.

    A store exposes one paginated parallel-scan primitive: read one
    page of segment `segment_index` out of `total_segments`, starting
    after `continuation_token`, optionally keeping only items whose
    timestamp is strictly greater than `since`. Implementations are
    process-wide and stateless per call, so concurrent runs may share
    one instance.
    """

    @property
    def name(self) -> "str": ...

    async def scan_segment(
        self,
        segment_index: "int",
        total_segments: "int",
        continuation_token: "Any" = None,
        since: "str | None" = None,
    ) -> "ScanPage": ...

    async def close(self) -> "None": ...
