"""
Content catalog query interface.

The recommender never owns content; it asks a ContentCatalog for items.
DataFrameCatalog is the in-process implementation backed by a pandas
DataFrame, one row per content item.

Example:
    >>> catalog = DataFrameCatalog.from_json("data/content_catalog.json")
    >>> catalog.query(subject="Mathematics", topics=["Algebra"], limit=10)
"""

from typing import Dict, List, Optional, Any, Iterable
from abc import ABC, abstractmethod
from pathlib import Path
import logging

import numpy as np
import pandas as pd

from modelhub.errors import CatalogQueryError
from .entities import ContentItem, Difficulty

logger = logging.getLogger(__name__)

CATALOG_COLUMNS = [
    'id', 'title', 'subject', 'topic', 'difficulty', 'content_type',
    'duration_minutes', 'tags', 'popularity', 'embedding', 'grade',
]


class ContentCatalog(ABC):
    """Read-only catalog interface."""

    @abstractmethod
    def get(self, content_id: str) -> Optional[ContentItem]:
        ...

    @abstractmethod
    def query(
        self,
        subject: Optional[str] = None,
        topics: Optional[Iterable[str]] = None,
        difficulty: Optional[Difficulty] = None,
        grade: Optional[int] = None,
        exclude_ids: Optional[Iterable[str]] = None,
        limit: Optional[int] = None
    ) -> List[ContentItem]:
        """
        Filter catalog items; results ordered by popularity (desc) then id.

        Raises:
            CatalogQueryError: the backing store failed
        """

    def get_many(self, content_ids: Iterable[str]) -> List[ContentItem]:
        items = []
        for content_id in content_ids:
            item = self.get(content_id)
            if item is not None:
                items.append(item)
        return items


class DataFrameCatalog(ContentCatalog):
    """Catalog backed by a pandas DataFrame."""

    def __init__(self, frame: pd.DataFrame):
        missing = {'id', 'title', 'subject', 'topic', 'difficulty'} - set(frame.columns)
        if missing:
            raise ValueError(f"Catalog is missing columns: {sorted(missing)}")

        frame = frame.copy()
        frame['id'] = frame['id'].astype(str)
        for column, default in (
            ('content_type', 'Text'),
            ('duration_minutes', 0.0),
            ('popularity', 0.0),
            ('grade', None),
            ('embedding', None),
        ):
            if column not in frame.columns:
                frame[column] = default
        if 'tags' not in frame.columns:
            frame['tags'] = [[] for _ in range(len(frame))]

        # Unnamed index so 'id' stays unambiguous as a column label
        self._frame = (
            frame.drop_duplicates(subset='id', keep='last')
            .set_index('id', drop=False)
            .rename_axis(None)
        )
        logger.info(f"Content catalog loaded: {len(self._frame)} items")

    @classmethod
    def from_items(cls, items: Iterable[ContentItem]) -> "DataFrameCatalog":
        records = []
        for item in items:
            record = item.to_dict()
            record['embedding'] = item.embedding
            records.append(record)
        return cls(pd.DataFrame(records, columns=CATALOG_COLUMNS))

    @classmethod
    def from_records(cls, records: List[Dict[str, Any]]) -> "DataFrameCatalog":
        if not records:
            return cls.empty()
        return cls(pd.DataFrame.from_records(records))

    @classmethod
    def empty(cls) -> "DataFrameCatalog":
        return cls(pd.DataFrame(columns=CATALOG_COLUMNS))

    @classmethod
    def from_json(cls, path: str) -> "DataFrameCatalog":
        """Load a JSON array of content records."""
        if not Path(path).exists():
            raise FileNotFoundError(f"Content catalog not found: {path}")
        return cls(pd.read_json(path, orient='records', dtype={'id': str}))

    def __len__(self) -> int:
        return len(self._frame)

    # ------------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------------

    def get(self, content_id: str) -> Optional[ContentItem]:
        if content_id not in self._frame.index:
            return None
        return self._row_to_item(self._frame.loc[content_id])

    def query(
        self,
        subject: Optional[str] = None,
        topics: Optional[Iterable[str]] = None,
        difficulty: Optional[Difficulty] = None,
        grade: Optional[int] = None,
        exclude_ids: Optional[Iterable[str]] = None,
        limit: Optional[int] = None
    ) -> List[ContentItem]:
        try:
            df = self._frame
            mask = pd.Series(True, index=df.index)

            if subject is not None:
                mask &= df['subject'] == subject
            if topics:
                mask &= df['topic'].isin(list(topics))
            if difficulty is not None:
                mask &= df['difficulty'] == Difficulty(difficulty).value
            if grade is not None:
                mask &= df['grade'].isna() | (df['grade'] == grade)
            if exclude_ids:
                mask &= ~df['id'].isin(list(exclude_ids))

            result = df[mask].sort_values(['popularity', 'id'], ascending=[False, True])
            if limit is not None:
                result = result.head(limit)

            return [self._row_to_item(row) for _, row in result.iterrows()]
        except Exception as e:
            raise CatalogQueryError(f"Catalog query failed: {e}") from e

    @staticmethod
    def _row_to_item(row: pd.Series) -> ContentItem:
        tags = row.get('tags')
        if not isinstance(tags, (list, tuple, np.ndarray)):
            tags = []
        embedding = row.get('embedding')
        if embedding is not None and not isinstance(embedding, np.ndarray):
            embedding = np.asarray(embedding, dtype=np.float32) if isinstance(embedding, (list, tuple)) else None
        grade = row.get('grade')
        grade = int(grade) if grade is not None and pd.notna(grade) else None
        duration = row.get('duration_minutes')
        popularity = row.get('popularity')

        return ContentItem(
            id=str(row['id']),
            title=str(row['title']),
            subject=str(row['subject']),
            topic=str(row['topic']),
            difficulty=Difficulty(row['difficulty']),
            content_type=str(row.get('content_type') or 'Text'),
            duration_minutes=float(duration) if duration is not None and pd.notna(duration) else 0.0,
            tags=[str(t) for t in tags],
            popularity=float(popularity) if popularity is not None and pd.notna(popularity) else 0.0,
            embedding=embedding,
            grade=grade,
        )
