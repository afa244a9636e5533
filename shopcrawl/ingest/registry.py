"""Extractor registry keyed by source name."""

import logging

from shopcrawl.config import ConfigurationError
from shopcrawl.ingest.base import Extractor

logger = logging.getLogger(__name__)


class ExtractorRegistry:
    """Maps source names to Extractor instances."""

    def __init__(self, extractors: dict[str, Extractor] | None = None):
        self._extractors: dict[str, Extractor] = dict(extractors or {})

    def register(self, source: str, extractor: Extractor) -> None:
        """
        Register an extractor for a source.

        Args:
            source: Source identifier
            extractor: Extractor implementation
        """
        if not isinstance(extractor, Extractor):
            raise TypeError(f"{extractor!r} does not implement Extractor")
        if source in self._extractors:
            logger.warning(f"Replacing extractor for source: {source}")
        self._extractors[source] = extractor
        logger.info(f"Registered extractor for source: {source}")

    def get(self, source: str) -> Extractor:
        """
        Get the extractor for a source.

        Raises:
            ConfigurationError: If no extractor is registered for the source
        """
        if source not in self._extractors:
            raise ConfigurationError(
                f"No extractor for source: {source}. Available: {self.available()}",
                source=source,
            )
        return self._extractors[source]

    def available(self) -> list[str]:
        return sorted(self._extractors)

    def __contains__(self, source: str) -> bool:
        return source in self._extractors
