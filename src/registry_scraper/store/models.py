"""Database tables for scraped images."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow():
    """Timezone-aware UTC now, used for column defaults."""
    return datetime.now(timezone.utc)


class ImageDB(Base):
    """A scraped image, identified by its manifest digest. Content never changes."""

    __tablename__ = "images"

    id = Column(Integer, primary_key=True, autoincrement=True)
    digest = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False, index=True)  # <domain>/<path>
    schema_version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    scraped_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<ImageDB {self.id} {self.name}@{self.digest}>"


class TagDB(Base):
    """A tag name pointing at an image within one version family."""

    __tablename__ = "tags"
    __table_args__ = (
        Index("ix_tags_latest", "distinction", "is_latest"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, index=True)
    image_id = Column(Integer, ForeignKey("images.id"), nullable=False, index=True)
    distinction = Column(String, nullable=False)
    is_latest = Column(Boolean, default=False, nullable=False)
    # False once the name points at another digest upstream
    is_tagged = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<TagDB {self.id} {self.name} image={self.image_id} latest={self.is_latest}>"


class PlatformDB(Base):
    """One architecture/OS specific manifest of an image."""

    __tablename__ = "platforms"

    id = Column(Integer, primary_key=True, autoincrement=True)
    image_id = Column(Integer, ForeignKey("images.id"), nullable=False, index=True)
    architecture = Column(String, nullable=False)
    os = Column(String, nullable=False)
    os_version = Column(String, default="")
    variant = Column(String, default="")
    manifest_digest = Column(String, nullable=False)
    created = Column(DateTime, nullable=True)  # newest history entry
    created_at = Column(DateTime, default=utcnow)
    features = Column(JSON, nullable=False)
    os_features = Column(JSON, nullable=False)

    def __repr__(self):
        return f"<PlatformDB {self.id} {self.os}/{self.architecture} image={self.image_id}>"


class LayerDB(Base):
    """A content-addressed layer shared between platforms."""

    __tablename__ = "layers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    digest = Column(String, nullable=False, unique=True)
    source_image_ids = Column(JSON, nullable=False)  # sorted image ids

    def __repr__(self):
        return f"<LayerDB {self.id} {self.digest}>"


class LayerPositionDB(Base):
    """Position of a layer in a platform's stack (0 is the base)."""

    __tablename__ = "layer_positions"
    __table_args__ = (
        Index("ix_layer_positions_platform_position", "platform_id", "position"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    layer_id = Column(Integer, ForeignKey("layers.id"), nullable=False, index=True)
    platform_id = Column(Integer, ForeignKey("platforms.id"), nullable=False)
    position = Column(Integer, nullable=False)

    def __repr__(self):
        return (
            f"<LayerPositionDB layer={self.layer_id} platform={self.platform_id} "
            f"position={self.position}>"
        )
