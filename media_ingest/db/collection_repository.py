"""Collection persistence (registration, lookup by path, metadata updates)."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Generator, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.errors import NotFoundError
from ..core.records import CollectionRecord
from ..core.types import CollectionKind
from .models import Collection

logger = logging.getLogger(__name__)


class CollectionRepository:
    """Reads and writes registered collections."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            from .connection import SessionLocal

            self._session_factory = SessionLocal
        return self._session_factory

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        session = self.session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _to_record(collection: Collection) -> CollectionRecord:
        return CollectionRecord(
            id=collection.id,
            name=collection.name,
            path=collection.path,
            kind=collection.kind,
            library_id=collection.library_id,
            images=list(collection.images or []),
            thumbnails=list(collection.thumbnails or []),
            cache_images=list(collection.cache_images or []),
            created_at=collection.created_at,
            updated_at=collection.updated_at,
        )

    def get(self, collection_id: str) -> Optional[CollectionRecord]:
        with self._session() as session:
            collection = session.get(Collection, collection_id)
            return self._to_record(collection) if collection else None

    def get_by_path(self, path: str) -> Optional[CollectionRecord]:
        """Look up a collection by its normalized absolute path."""
        with self._session() as session:
            collection = session.execute(
                select(Collection).where(Collection.path == path)
            ).scalar_one_or_none()
            return self._to_record(collection) if collection else None

    def create(
        self,
        name: str,
        path: str,
        kind: CollectionKind,
        library_id: Optional[str] = None,
    ) -> CollectionRecord:
        """Register a new, empty collection."""
        with self._session() as session:
            collection = Collection(
                name=name,
                path=path,
                kind=CollectionKind(kind).value,
                library_id=library_id,
                images=[],
                thumbnails=[],
                cache_images=[],
            )
            session.add(collection)
            session.commit()
            session.refresh(collection)
            logger.info(f"Registered collection {collection.id}: {name} ({path})")
            return self._to_record(collection)

    def update_metadata(
        self,
        collection_id: str,
        name: str,
        kind: CollectionKind,
        library_id: Optional[str] = None,
        clear_contents: bool = False,
    ) -> CollectionRecord:
        """
        Refresh name/kind (and library) of an existing collection.

        Args:
            clear_contents: Also empty the image, thumbnail and cache lists
        """
        with self._session() as session:
            collection = session.get(Collection, collection_id)
            if collection is None:
                raise NotFoundError(f"Collection {collection_id} not found")

            collection.name = name
            collection.kind = CollectionKind(kind).value
            if library_id is not None:
                collection.library_id = library_id
            if clear_contents:
                collection.images = []
                collection.thumbnails = []
                collection.cache_images = []
            collection.updated_at = datetime.utcnow()
            session.commit()
            session.refresh(collection)
            return self._to_record(collection)

    def set_contents(
        self,
        collection_id: str,
        images: Optional[List[Dict[str, Any]]] = None,
        thumbnails: Optional[List[Dict[str, Any]]] = None,
        cache_images: Optional[List[Dict[str, Any]]] = None,
    ) -> CollectionRecord:
        """Replace embedded lists (used by scan/artifact workers)."""
        with self._session() as session:
            collection = session.get(Collection, collection_id)
            if collection is None:
                raise NotFoundError(f"Collection {collection_id} not found")

            # Assign new lists so the JSON columns are marked dirty
            if images is not None:
                collection.images = list(images)
            if thumbnails is not None:
                collection.thumbnails = list(thumbnails)
            if cache_images is not None:
                collection.cache_images = list(cache_images)
            collection.updated_at = datetime.utcnow()
            session.commit()
            session.refresh(collection)
            return self._to_record(collection)

    def append_artifact(
        self, collection_id: str, list_name: str, entry: Dict[str, Any]
    ) -> bool:
        """
        Record a rendered thumbnail or cache image for one image.

        The row is locked for the read-modify-write (PostgreSQL); an entry
        for the same image_id replaces the previous one.

        Returns:
            True if the entry was added, False if it replaced an existing one
        """
        if list_name not in ("thumbnails", "cache_images"):
            raise ValueError(f"Unknown artifact list: {list_name}")

        with self._session() as session:
            collection = session.execute(
                select(Collection).where(Collection.id == collection_id).with_for_update()
            ).scalar_one_or_none()
            if collection is None:
                raise NotFoundError(f"Collection {collection_id} not found")

            current = list(getattr(collection, list_name) or [])
            kept = [item for item in current if item.get("image_id") != entry["image_id"]]
            setattr(collection, list_name, kept + [entry])
            collection.updated_at = datetime.utcnow()
            session.commit()
            return len(kept) == len(current)
