"""Persistent store: typed repositories over SQLAlchemy sessions."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, ContextManager, Iterator, List, Optional, Sequence

from sqlalchemy import create_engine, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..exceptions import DoesNotExist, StoreError
from .models import Base, ImageDB, LayerDB, LayerPositionDB, PlatformDB, TagDB, utcnow

logger = logging.getLogger(__name__)

SessionScope = Callable[[], ContextManager[Session]]


def _apply_filters(query: Query, model, **filters) -> Query:
    """Filter ``query`` on the columns of ``model`` whose value is not None."""
    for column, value in filters.items():
        if value is not None:
            query = query.filter(getattr(model, column) == value)
    return query


def _first_or_raise(query: Query, what: str, **filters):
    row = query.first()
    if row is None:
        described = ", ".join(f"{k}={v!r}" for k, v in filters.items() if v is not None)
        raise DoesNotExist(f"{what} does not exist ({described})")
    return row


class _Repository:
    def __init__(self, scope: SessionScope) -> None:
        self._scope = scope

    def _save(self, row):
        with self._scope() as session:
            return session.merge(row)

    def _add(self, row):
        with self._scope() as session:
            session.add(row)
            session.flush()
            return row


class ImageRepository(_Repository):
    def create(
        self,
        digest: str,
        name: str,
        schema_version: int,
        created_at: Optional[datetime] = None,
        scraped_at: Optional[datetime] = None,
    ) -> ImageDB:
        now = utcnow()
        return self._add(
            ImageDB(
                digest=digest,
                name=name,
                schema_version=schema_version,
                created_at=created_at or now,
                scraped_at=scraped_at or now,
            )
        )

    def _query(self, session: Session, id=None, digest=None, name=None, tag=None) -> Query:
        query = _apply_filters(session.query(ImageDB), ImageDB, id=id, digest=digest, name=name)
        if tag is not None:
            # Prefer the image the tag name currently designates
            query = (
                query.join(TagDB, TagDB.image_id == ImageDB.id)
                .filter(TagDB.name == tag)
                .order_by(TagDB.is_tagged.desc(), ImageDB.id.desc())
            )
        return query

    def get(
        self,
        id: Optional[int] = None,
        digest: Optional[str] = None,
        name: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> ImageDB:
        """Return the single matching image.

        Raises:
            DoesNotExist: If no image matches
        """
        with self._scope() as session:
            query = self._query(session, id=id, digest=digest, name=name, tag=tag)
            return _first_or_raise(query, "Image", id=id, digest=digest, name=name, tag=tag)

    def list(self, name: Optional[str] = None, tag: Optional[str] = None) -> List[ImageDB]:
        with self._scope() as session:
            query = self._query(session, name=name, tag=tag)
            if tag is None:
                query = query.order_by(ImageDB.id)
            return query.all()

    def update(self, image: ImageDB) -> ImageDB:
        return self._save(image)

    def names(self) -> List[str]:
        """Distinct repository names, sorted."""
        with self._scope() as session:
            rows = session.query(ImageDB.name).distinct().order_by(ImageDB.name).all()
            return [name for (name,) in rows]


class TagRepository(_Repository):
    def create(
        self,
        name: str,
        image_id: int,
        distinction: str,
        is_latest: bool = False,
        is_tagged: bool = True,
    ) -> TagDB:
        return self._add(
            TagDB(
                name=name,
                image_id=image_id,
                distinction=distinction,
                is_latest=is_latest,
                is_tagged=is_tagged,
            )
        )

    def _query(self, session: Session, image_name=None, **filters) -> Query:
        query = _apply_filters(session.query(TagDB), TagDB, **filters)
        if image_name is not None:
            query = query.join(ImageDB, ImageDB.id == TagDB.image_id).filter(
                ImageDB.name == image_name
            )
        return query.order_by(TagDB.id)

    def get(
        self,
        distinction: Optional[str] = None,
        image_id: Optional[int] = None,
        image_name: Optional[str] = None,
        is_latest: Optional[bool] = None,
        name: Optional[str] = None,
    ) -> TagDB:
        """Return the first matching tag.

        Raises:
            DoesNotExist: If no tag matches
        """
        filters = dict(
            distinction=distinction, image_id=image_id, is_latest=is_latest, name=name
        )
        with self._scope() as session:
            query = self._query(session, image_name=image_name, **filters)
            return _first_or_raise(query, "Tag", image_name=image_name, **filters)

    def list(
        self,
        distinction: Optional[str] = None,
        image_id: Optional[int] = None,
        image_name: Optional[str] = None,
        is_latest: Optional[bool] = None,
        name: Optional[str] = None,
    ) -> List[TagDB]:
        with self._scope() as session:
            return self._query(
                session,
                image_name=image_name,
                distinction=distinction,
                image_id=image_id,
                is_latest=is_latest,
                name=name,
            ).all()

    def update(self, tag: TagDB) -> TagDB:
        return self._save(tag)


class PlatformRepository(_Repository):
    def create(
        self,
        image_id: int,
        architecture: str,
        os: str,
        manifest_digest: str,
        os_version: str = "",
        variant: str = "",
        created: Optional[datetime] = None,
        features: Sequence[str] = (),
        os_features: Sequence[str] = (),
    ) -> PlatformDB:
        return self._add(
            PlatformDB(
                image_id=image_id,
                architecture=architecture,
                os=os,
                os_version=os_version,
                variant=variant,
                manifest_digest=manifest_digest,
                created=created,
                created_at=utcnow(),
                features=list(features),
                os_features=list(os_features),
            )
        )

    def get(
        self,
        id: Optional[int] = None,
        image_id: Optional[int] = None,
        architecture: Optional[str] = None,
        os: Optional[str] = None,
        variant: Optional[str] = None,
    ) -> PlatformDB:
        filters = dict(id=id, image_id=image_id, architecture=architecture, os=os, variant=variant)
        with self._scope() as session:
            query = _apply_filters(session.query(PlatformDB), PlatformDB, **filters)
            return _first_or_raise(query.order_by(PlatformDB.id), "Platform", **filters)

    def list(
        self, image_id: Optional[int] = None, layer_digest: Optional[str] = None
    ) -> List[PlatformDB]:
        """Platforms of an image, or platforms whose stack contains a layer."""
        with self._scope() as session:
            query = _apply_filters(session.query(PlatformDB), PlatformDB, image_id=image_id)
            if layer_digest is not None:
                query = (
                    query.join(LayerPositionDB, LayerPositionDB.platform_id == PlatformDB.id)
                    .join(LayerDB, LayerDB.id == LayerPositionDB.layer_id)
                    .filter(LayerDB.digest == layer_digest)
                    .distinct()
                )
            return query.order_by(PlatformDB.id).all()


class LayerRepository(_Repository):
    def create(self, digest: str) -> LayerDB:
        return self._add(LayerDB(digest=digest, source_image_ids=[]))

    def get(self, id: Optional[int] = None, digest: Optional[str] = None) -> LayerDB:
        with self._scope() as session:
            query = _apply_filters(session.query(LayerDB), LayerDB, id=id, digest=digest)
            return _first_or_raise(query, "Layer", id=id, digest=digest)

    def get_or_create(self, digest: str) -> LayerDB:
        try:
            return self.get(digest=digest)
        except DoesNotExist:
            return self.create(digest)

    def list(self, platform_id: Optional[int] = None) -> List[LayerDB]:
        """All layers, or the stack of one platform ordered base first."""
        with self._scope() as session:
            query = session.query(LayerDB)
            if platform_id is None:
                return query.order_by(LayerDB.id).all()
            return (
                query.join(LayerPositionDB, LayerPositionDB.layer_id == LayerDB.id)
                .filter(LayerPositionDB.platform_id == platform_id)
                .order_by(LayerPositionDB.position)
                .all()
            )

    def update(self, layer: LayerDB) -> LayerDB:
        return self._save(layer)


class LayerPositionRepository(_Repository):
    def create(self, layer_id: int, platform_id: int, position: int) -> LayerPositionDB:
        return self._add(
            LayerPositionDB(layer_id=layer_id, platform_id=platform_id, position=position)
        )

    def list(
        self, platform_id: Optional[int] = None, layer_id: Optional[int] = None
    ) -> List[LayerPositionDB]:
        with self._scope() as session:
            query = _apply_filters(
                session.query(LayerPositionDB),
                LayerPositionDB,
                platform_id=platform_id,
                layer_id=layer_id,
            )
            return query.order_by(LayerPositionDB.platform_id, LayerPositionDB.position).all()

    def count(self, platform_id: int) -> int:
        """Depth of a platform's layer stack."""
        with self._scope() as session:
            return (
                session.query(func.count(LayerPositionDB.id))
                .filter(LayerPositionDB.platform_id == platform_id)
                .scalar()
            )


class _Repositories:
    def _bind(self, scope: SessionScope) -> None:
        self.images = ImageRepository(scope)
        self.tags = TagRepository(scope)
        self.platforms = PlatformRepository(scope)
        self.layers = LayerRepository(scope)
        self.layer_positions = LayerPositionRepository(scope)


class Transaction(_Repositories):
    """Repositories bound to one session, committed or rolled back as a unit."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._bind(self._scope)

    @contextmanager
    def _scope(self) -> Iterator[Session]:
        try:
            yield self.session
            self.session.flush()
        except SQLAlchemyError as e:
            raise StoreError(f"Database operation failed: {e}") from e


class Store(_Repositories):
    """SQLAlchemy backed store of images, tags, platforms and layers.

    Each repository call outside ``transaction()`` runs in its own session
    and is committed immediately.
    """

    def __init__(self, url: str = "sqlite:///registry_scraper.db", echo: bool = False) -> None:
        engine_args = {"echo": echo}
        if url.startswith("sqlite"):
            engine_args["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection keeps the in-memory database alive
                engine_args["poolclass"] = StaticPool

        try:
            self.engine = create_engine(url, **engine_args)
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to open database {url}: {e}") from e

        self.SessionLocal = sessionmaker(
            autoflush=False, expire_on_commit=False, bind=self.engine
        )
        self._bind(self._autocommit_scope)
        logger.debug("Opened store at %s", self.engine.url)

    @contextmanager
    def _autocommit_scope(self) -> Iterator[Session]:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Database operation failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Yield a Transaction; commit on success, roll back on any exception.

        Examples:
            with store.transaction() as tx:
                image = tx.images.create(digest, name, 2)
                tx.tags.create("1.0", image.id, "majorMinor")
        """
        session = self.SessionLocal()
        try:
            yield Transaction(session)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Transaction failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        self.engine.dispose()
