import hashlib

import structlog

from usagelens.models import UsageRecord

logger = structlog.get_logger()

# only the first few duplicates of a run are logged
_MAX_LOGGED_DUPLICATES = 5


def derive_identity(record: "UsageRecord") -> "str":
    """
    returns a stable identity for a record:
     1. its explicit id
     2. entity name + timestamp
     3. a hash of timestamp, model and entity name
    """
    if record.id:
        return f"id|{record.id}"

    if record.entity_name and record.timestamp:
        return f"et|{record.entity_name}|{record.timestamp}"

    digest = hashlib.sha1(
        f"{record.timestamp}|{record.model}|{record.entity_name}".encode("utf-8")
    ).hexdigest()
    return f"h|{digest}"


class RecordDeduplicator:
    """
    RecordDeduplicator admits each logical record at most once.

    All segments of a run share one instance on the same event loop.
    admit() has no suspension point between the membership check and
    the insert, so concurrent segments can never double-admit without
    a lock. One instance per run; never share across sessions.
    """

    def __init__(self, max_logged: "int" = _MAX_LOGGED_DUPLICATES) -> "None":
        self._seen: "set[str]" = set()
        self._max_logged = max_logged
        self.duplicate_count: "int" = 0

    def __len__(self) -> "int":
        return len(self._seen)

    def admit(self, record: "UsageRecord") -> "bool":
        """
        returns True and remembers the record's identity if it is new,
        False if the identity was already admitted.
        """
        identity = derive_identity(record)
        if identity in self._seen:
            self.duplicate_count += 1
            if self.duplicate_count <= self._max_logged:
                logger.info(
                    "duplicate_record",
                    identity=identity,
                    duplicate_count=self.duplicate_count,
                )
            return False

        self._seen.add(identity)
        return True
