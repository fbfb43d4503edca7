"""
Global pytest configuration and fixtures for the model hub and
recommendation test suite.

Provides a controllable clock, temporary cache/registry locations, a stub
loader for lifecycle tests and a small learning-content catalog.
"""

from typing import Dict, List

import numpy as np
import pytest

from modelhub.config import ModelHubConfig
from modelhub.registry import ModelCache
from learnrec.catalog import DataFrameCatalog
from learnrec.entities import ContentItem, UserProfile

from tests.utils.helpers import FakeClock, StubLoader


def pytest_collection_modifyitems(config, items):
    """Add markers based on test file name."""
    for item in items:
        if "test_api" in str(item.fspath):
            item.add_marker(pytest.mark.api)
        elif "test_integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =======================
# Hub Fixtures
# =======================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(tmp_path, clock) -> ModelCache:
    return ModelCache(db_path=str(tmp_path / "cache" / "model_cache.db"), clock=clock)


@pytest.fixture
def hub_config(tmp_path) -> ModelHubConfig:
    return ModelHubConfig(
        registry_path=str(tmp_path / "models" / "registry.json"),
        registry_url=None,
        artifact_dir=str(tmp_path / "models"),
        cache_db_path=str(tmp_path / "cache" / "model_cache.db"),
        log_dir=str(tmp_path / "logs"),
        load_timeout_seconds=5.0,
    )


@pytest.fixture
def stub_loader() -> StubLoader:
    return StubLoader()


# =======================
# Catalog Fixtures
# =======================

@pytest.fixture
def sample_items() -> List[ContentItem]:
    return [
        ContentItem("m1", "Linear Equations", "Mathematics", "Algebra", "Easy", "Video", 20,
                    ["algebra", "equations"], 0.9, grade=10),
        ContentItem("m2", "Quadratic Equations", "Mathematics", "Algebra", "Medium", "Text", 30,
                    ["algebra", "equations"], 0.8, grade=10),
        ContentItem("m3", "Polynomials", "Mathematics", "Algebra", "Hard", "Quiz", 45,
                    ["algebra", "polynomials"], 0.5, grade=10),
        ContentItem("m4", "Triangles", "Mathematics", "Geometry", "Medium", "Interactive", 25,
                    ["triangles"], 0.7, grade=10),
        ContentItem("s1", "Laws of Motion", "Science", "Physics", "Medium", "Video", 40,
                    ["motion"], 0.95, grade=10),
        ContentItem("s2", "Atomic Structure", "Science", "Chemistry", "Easy", "Text", 15,
                    ["atoms"], 0.6, grade=9),
        ContentItem("e1", "Tenses", "English", "Grammar", "Easy", "Text", 10,
                    ["tenses"], 0.4, grade=10),
    ]


@pytest.fixture
def catalog(sample_items) -> DataFrameCatalog:
    return DataFrameCatalog.from_items(sample_items)


@pytest.fixture
def math_profile() -> UserProfile:
    return UserProfile(user_id="new-user", grade=10, board="CBSE", subjects=["Mathematics"])


@pytest.fixture
def factor_payload() -> Dict[str, np.ndarray]:
    """Factor model where u1 strongly prefers m4."""
    return {
        "U": np.array([[1.0, 0.0], [0.0, 1.0]]),
        "V": np.array([[0.1, 0.0], [0.2, 0.0], [0.9, 0.0]]),
        "user_ids": np.array(["u1", "u2"]),
        "item_ids": np.array(["m2", "m3", "m4"]),
    }
