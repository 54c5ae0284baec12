import os
import time

import structlog

from meterbar.codec import (
    decode_aggregate,
    encode_aggregate,
    read_document,
    remove_document,
    write_document,
)
from meterbar.models import Aggregate

logger = structlog.get_logger()

# must match exactly between the writer and any reader, a mismatch
# silently reads as "no data"
DEFAULT_NAMESPACE = "group.dev.meterbar.shared"

RECORD_FILENAME = "aggregate.json"
SIGNAL_FILENAME = "reload.signal"


class SharedPublicationStore:
    """
    SharedPublicationStore is the cross-process replica of the
    Aggregate. The orchestrator publishes to it and never reads it
    back; out-of-process readers call read() on their own schedule
    and may watch last_signal() to re-read early.
    """

    def __init__(
        self,
        shared_dir: "str",
        namespace: "str" = DEFAULT_NAMESPACE,
    ) -> "None":
        self._namespace = namespace
        self._dir = os.path.join(shared_dir, namespace)

    @property
    def namespace(self) -> "str":
        return self._namespace

    @property
    def record_path(self) -> "str":
        return os.path.join(self._dir, RECORD_FILENAME)

    @property
    def signal_path(self) -> "str":
        return os.path.join(self._dir, SIGNAL_FILENAME)

    def publish(self, aggregate: "Aggregate") -> "None":
        """
        overwrites the publication record with the full aggregate
        in a single atomic replace.
        """
        write_document(self.record_path, encode_aggregate(aggregate))
        logger.debug(
            "aggregate_published",
            namespace=self._namespace,
            sources=len(aggregate),
        )

    def read(self) -> "Aggregate":
        """
        returns the last published aggregate, skipping sources unknown
        to this build. Missing or undecodable records read as empty.
        """
        return decode_aggregate(read_document(self.record_path))

    def notify(self) -> "None":
        """
        best-effort signal for the out-of-process reader to re-read.
        Nobody listening is not an error, and neither is failing to
        write the signal.
        """
        try:
            os.makedirs(self._dir, exist_ok=True)
            with open(self.signal_path, "w", encoding="utf-8") as f:
                f.write(f"{time.time():.6f}\n")
        except OSError as e:
            logger.warning("notify_failed", path=self.signal_path, error=str(e))

    def last_signal(self) -> "float | None":
        """
        returns the unix timestamp of the last notify(), or None.
        """
        try:
            with open(self.signal_path, encoding="utf-8") as f:
                return float(f.read().strip())
        except (OSError, ValueError):
            return None

    def clear(self) -> "None":
        """
        deletes the record and the signal. Only used on an explicit
        user reset.
        """
        removed = remove_document(self.record_path)
        remove_document(self.signal_path)
        if removed:
            logger.info("publication_cleared", namespace=self._namespace)
