"""Layer provenance: which images a shared layer most likely comes from."""

import logging
from typing import Iterable, Iterator, Optional

from .store import ImageDB, LayerDB, Store


class SourceImageIDs:
    """Immutable sorted set of image ids."""

    __slots__ = ("_ids",)

    def __init__(self, ids: Iterable[int] = ()) -> None:
        self._ids = tuple(sorted(set(ids)))

    def __iter__(self) -> Iterator[int]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, image_id: object) -> bool:
        return image_id in self._ids

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SourceImageIDs):
            return NotImplemented
        return self._ids == other._ids

    def __hash__(self) -> int:
        return hash(self._ids)

    def __repr__(self) -> str:
        return f"SourceImageIDs({list(self._ids)!r})"

    def difference(self, other: "SourceImageIDs") -> "SourceImageIDs":
        return SourceImageIDs(i for i in self._ids if i not in other)

    def union(self, other: "SourceImageIDs") -> "SourceImageIDs":
        return SourceImageIDs(self._ids + other._ids)

    def to_list(self) -> list[int]:
        return list(self._ids)


class ProvenanceIndexer:
    """Maintains ``source_image_ids`` of layers.

    The source of a layer is the set of images owning the shallowest
    platforms that contain it. Deeper platforms are assumed to be built on
    top of those.
    """

    def __init__(self, store: Store, logger: Optional[logging.Logger] = None) -> None:
        self.store = store
        self.logger = logger or logging.getLogger(__name__)

    def compute_source_images(self, layer: LayerDB) -> SourceImageIDs:
        platforms = self.store.platforms.list(layer_digest=layer.digest)
        if not platforms:
            return SourceImageIDs()

        depths = {p.id: self.store.layer_positions.count(p.id) for p in platforms}
        minimum = min(depths.values())
        return SourceImageIDs(p.image_id for p in platforms if depths[p.id] == minimum)

    def update_source_images_of_layer(self, layer: LayerDB) -> bool:
        """Recompute the source images of a layer.

        Returns:
            True if the stored set changed and was written
        """
        computed = self.compute_source_images(layer)
        if computed == SourceImageIDs(layer.source_image_ids or ()):
            return False

        layer.source_image_ids = computed.to_list()
        self.store.layers.update(layer)
        self.logger.debug("Source images of layer %s are now %s", layer.digest, computed.to_list())
        return True

    def update_image(self, image: ImageDB) -> int:
        """Recompute every layer of an image; returns the number of layers written."""
        updated = 0
        seen = set()
        for platform in self.store.platforms.list(image_id=image.id):
            for layer in self.store.layers.list(platform_id=platform.id):
                if layer.id in seen:
                    continue
                seen.add(layer.id)
                if self.update_source_images_of_layer(layer):
                    updated += 1
        return updated

    def source_images_of_layer(self, digest: str) -> list[ImageDB]:
        """Images the layer is believed to originate from.

        Raises:
            DoesNotExist: If the layer is unknown
        """
        layer = self.store.layers.get(digest=digest)
        return [self.store.images.get(id=image_id) for image_id in layer.source_image_ids or ()]

    def child_images(self, image: ImageDB) -> list[ImageDB]:
        """Images built on top of ``image``.

        A child owns a platform that has the top layer of the image's deepest
        platform at the same position and more layers above it.
        """
        platforms = self.store.platforms.list(image_id=image.id)
        stacks = [self.store.layers.list(platform_id=p.id) for p in platforms]
        stacks = [stack for stack in stacks if stack]
        if not stacks:
            return []

        stack = max(stacks, key=len)
        depth = len(stack)
        top = stack[-1]

        child_ids = set()
        for position in self.store.layer_positions.list(layer_id=top.id):
            if position.position != depth - 1:
                continue
            if self.store.layer_positions.count(position.platform_id) <= depth:
                continue
            platform = self.store.platforms.get(id=position.platform_id)
            if platform.image_id != image.id:
                child_ids.add(platform.image_id)

        return [self.store.images.get(id=image_id) for image_id in sorted(child_ids)]
