"""Scraping of registry images into the store."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, Optional

from .exceptions import DoesNotExist, RegistryScraperError, ScrapeError
from .manifest import Platform
from .provenance import ProvenanceIndexer
from .registry import RegistryImage
from .store import ImageDB, Store, TagDB, Transaction
from .store.models import utcnow
from .utils import short_digest
from .versions import VersionResolver, default_resolver


class Scraper:
    """Records registry images and keeps the latest tag of each version family.

    At most one tag per (repository, distinction) carries ``is_latest``. The
    flag is always set on the new latest tag before it is cleared on the old
    one, so an interrupted update leaves two latest tags rather than none.
    """

    def __init__(
        self,
        store: Store,
        indexer: Optional[ProvenanceIndexer] = None,
        clock: Optional[Callable[[], datetime]] = None,
        resolver: Optional[VersionResolver] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.indexer = indexer or ProvenanceIndexer(store)
        self.clock = clock or utcnow
        self.resolver = resolver or default_resolver
        self.logger = logger or logging.getLogger(__name__)

    @contextmanager
    def _step(self, description: str, image: RegistryImage) -> Iterator[None]:
        try:
            yield
        except ScrapeError:
            raise
        except RegistryScraperError as e:
            raise ScrapeError(f"{description} failed for {image}: {e}") from e

    def _require_tag(self, image: RegistryImage) -> str:
        if not image.tag:
            raise ScrapeError(f"{image} has no tag to scrape")
        return image.tag

    async def scrape_image(self, image: RegistryImage) -> ImageDB:
        """태그 하나를 저장소에 기록합니다.

        digest가 이미 저장되어 있으면 태그만 추가하고 scraped_at을 갱신합니다.
        없으면 매니페스트를 정규화하여 Image, Tag, Platform, Layer를 하나의
        트랜잭션으로 생성한 뒤 레이어의 source image를 다시 계산합니다.

        Args:
            image: 태그가 지정된 레지스트리 이미지

        Returns:
            ImageDB: 저장된 이미지

        Raises:
            ScrapeError: 레지스트리 조회 또는 저장에 실패한 경우

        Examples:
            repository = Repository(client, "dev.local/unit")
            record = await scraper.scrape_image(repository.image(tag="1"))
            print(record.id, record.digest)
        """
        tag = self._require_tag(image)
        with self._step("retrieving digest", image):
            digest = await image.digest()
        distinction = self.resolver.classify(tag).distinction

        with self._step("looking up image", image):
            try:
                record = self.store.images.get(digest=digest)
            except DoesNotExist:
                record = None

        if record is None:
            return await self.create_image_from_registry(distinction, image)

        with self._step("recording tag", image):
            if not self.store.tags.list(image_id=record.id, name=tag):
                self.store.tags.create(name=tag, image_id=record.id, distinction=distinction)
                self.logger.debug("Tagged image %s as %s", record.digest, tag)
            self._touch(record)

        return record

    async def scrape_latest_image(self, image: RegistryImage) -> TagDB:
        """Make the greatest upstream tag of the image's family the latest one.

        Returns:
            The tag flagged latest after the call

        Raises:
            ScrapeError: If a registry or store step fails
        """
        tag = self._require_tag(image)
        distinction = self.resolver.classify(tag).distinction

        with self._step("reading current latest tags", image):
            current_tags = self.store.tags.list(
                image_name=image.name, distinction=distinction, is_latest=True
            )
            current_images = {t.id: self.store.images.get(id=t.image_id) for t in current_tags}

        with self._step("listing tags", image):
            upstream = await image.repository.tags()

        latest_version = self.resolver.find_latest(tag, upstream)
        latest_name = str(latest_version)
        latest_image = image if latest_name == tag else image.repository.image(tag=latest_name)

        with self._step("retrieving digest", latest_image):
            latest_digest = await latest_image.digest()

        with self._step("looking up image", latest_image):
            try:
                latest_record = self.store.images.get(digest=latest_digest)
            except DoesNotExist:
                latest_record = None

        if latest_record is None:
            latest_record = await self.create_image_from_registry(distinction, latest_image)

        if len(current_tags) == 1:
            current = current_tags[0]
            current_image = current_images[current.id]
            if current_image.digest == latest_digest:
                with self._step("refreshing image", image):
                    self._touch(current_image)
                return current

        with self._step("updating latest tag", latest_image):
            latest_tag = self._promote(latest_record, latest_name, distinction)
            for old in current_tags:
                if old.id == latest_tag.id:
                    continue
                old.is_latest = False
                if old.name == latest_tag.name:
                    old.is_tagged = False
                self.store.tags.update(old)
                self.logger.info(
                    "%s:%s is no longer latest of %s", image.name, old.name, distinction
                )
            self._touch(latest_record)

        return latest_tag

    async def create_image_from_registry(
        self, distinction: str, image: RegistryImage
    ) -> ImageDB:
        """Normalize an image and create all of its rows in one transaction.

        Source images of every layer of the new image are recomputed after
        the commit.
        """
        tag = self._require_tag(image)
        with self._step("creating image from registry image", image):
            digest = await image.digest()
            schema_version = await image.schema_version()
            platforms = await image.platforms()
            for platform in platforms:
                await platform.resolve()

            now = self.clock()
            with self.store.transaction() as tx:
                try:
                    # Created concurrently since the caller looked it up
                    record = tx.images.get(digest=digest)
                    created = False
                except DoesNotExist:
                    record = tx.images.create(
                        digest=digest,
                        name=image.name,
                        schema_version=schema_version,
                        created_at=now,
                        scraped_at=now,
                    )
                    created = True

                if created or not tx.tags.list(image_id=record.id, name=tag):
                    tx.tags.create(
                        name=tag,
                        image_id=record.id,
                        distinction=distinction,
                        is_latest=False,
                        is_tagged=True,
                    )
                if created:
                    for platform in platforms:
                        self._create_platform(tx, record, platform, now)

        if not created:
            return record

        self.logger.info("Created image %s@%s", image.name, short_digest(digest))
        with self._step("updating source images", image):
            self.indexer.update_image(record)

        return record

    def _create_platform(
        self, tx: Transaction, record: ImageDB, platform: Platform, now: datetime
    ) -> None:
        manifest = platform.manifest
        row = tx.platforms.create(
            image_id=record.id,
            architecture=platform.architecture,
            os=platform.os,
            manifest_digest=manifest.config.digest,
            os_version=platform.os_version,
            variant=platform.variant,
            created=manifest.config.created or now,
            features=platform.features,
            os_features=platform.os_features,
        )
        for position, layer in enumerate(manifest.layers):
            layer_row = tx.layers.get_or_create(layer.digest)
            tx.layer_positions.create(layer_id=layer_row.id, platform_id=row.id, position=position)

    def _promote(self, record: ImageDB, name: str, distinction: str) -> TagDB:
        tags = self.store.tags.list(image_id=record.id, distinction=distinction, name=name)
        if tags:
            latest_tag = tags[0]
        else:
            latest_tag = self.store.tags.create(
                name=name, image_id=record.id, distinction=distinction
            )

        if not latest_tag.is_latest:
            latest_tag.is_latest = True
            latest_tag = self.store.tags.update(latest_tag)
            self.logger.info("%s:%s is now latest of %s", record.name, name, distinction)

        return latest_tag

    def _touch(self, record: ImageDB) -> None:
        record.scraped_at = self.clock()
        self.store.images.update(record)
