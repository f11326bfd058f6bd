"""Bundle of collaborator implementations, with per-site publisher routing."""

from __future__ import annotations

import importlib
from typing import Callable

from pressroom.collaborators.types import ContentGenerator, FeedReader, ImageProvider, MetadataGenerator, Publisher
from pressroom.infrastructure.config import TimeoutConfig
from pressroom.infrastructure.logger import logger


class Collaborators:
    """Holds the collaborator implementations the engine talks to.

    Publishers are registered per target site; every other collaborator is
    shared by all sites.
    """

    def __init__(
        self,
        content: ContentGenerator,
        metadata: MetadataGenerator,
        images: ImageProvider,
        feeds: FeedReader,
        timeouts: TimeoutConfig | None = None,
    ) -> None:
        self.content = content
        self.metadata = metadata
        self.images = images
        self.feeds = feeds
        self.timeouts = timeouts or TimeoutConfig()
        self._publishers: dict[str, Publisher] = {}

    def register_publisher(self, site_id: str, publisher: Publisher) -> None:
        if site_id in self._publishers:
            raise ValueError(f'Publisher for site "{site_id}" is already registered')
        self._publishers[site_id] = publisher

    def publisher_for(self, site_id: str) -> Publisher | None:
        return self._publishers.get(site_id)

    def has_site(self, site_id: str) -> bool:
        return site_id in self._publishers

    def site_ids(self) -> list[str]:
        return list(self._publishers)


def load_collaborators(factory_path: str) -> Collaborators:
    """Import ``module:callable`` and call it to build the collaborator bundle."""
    module_name, sep, attr = factory_path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Collaborator factory must look like 'module:callable', got {factory_path!r}")
    module = importlib.import_module(module_name)
    factory: Callable[[], Collaborators] = getattr(module, attr)
    collaborators = factory()
    if not isinstance(collaborators, Collaborators):
        raise TypeError(f"{factory_path} returned {type(collaborators).__name__}, expected Collaborators")
    logger.info("Collaborators loaded", factory=factory_path, sites=collaborators.site_ids())
    return collaborators
