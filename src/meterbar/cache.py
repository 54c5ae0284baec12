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


class MetricsCache:
    """
    MetricsCache holds the last known-good Aggregate on local disk so
    it survives a process restart. It is owned by the orchestrator,
    which is its only writer.
    """

    def __init__(self, path: "str") -> "None":
        self._path = path

    @property
    def path(self) -> "str":
        return self._path

    def load(self) -> "Aggregate":
        """
        returns the persisted aggregate. Missing or corrupt data
        yields an empty aggregate.
        """
        aggregate = decode_aggregate(read_document(self._path))
        logger.debug("cache_loaded", path=self._path, sources=len(aggregate))
        return aggregate

    def save(self, aggregate: "Aggregate") -> "None":
        """
        replaces the persisted aggregate as a whole.
        """
        write_document(self._path, encode_aggregate(aggregate))
        logger.debug("cache_saved", path=self._path, sources=len(aggregate))

    def clear(self) -> "None":
        if remove_document(self._path):
            logger.info("cache_cleared", path=self._path)
