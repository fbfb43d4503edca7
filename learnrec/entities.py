"""
Domain entities for the content recommender.

Content items and profiles are owned by external collaborators (catalog,
profile store); the recommender only reads them.
"""

from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import numpy as np


# ============================================================================
# Enumerations
# ============================================================================

class Difficulty(str, Enum):
    EASY = 'Easy'
    MEDIUM = 'Medium'
    HARD = 'Hard'

    def step(self, delta: int) -> "Difficulty":
        """Move ``delta`` tiers, clamped to Easy..Hard."""
        tiers = list(Difficulty)
        index = min(max(tiers.index(self) + delta, 0), len(tiers) - 1)
        return tiers[index]


class InteractionAction(str, Enum):
    VIEW = 'view'
    COMPLETE = 'complete'
    LIKE = 'like'
    BOOKMARK = 'bookmark'
    SKIP = 'skip'


class RecommendationType(str, Enum):
    NEXT_CONTENT = 'next_content'
    SIMILAR_CONTENT = 'similar_content'
    DIFFICULTY_ADJUSTED = 'difficulty_adjusted'
    EXAM_PREP = 'exam_prep'
    GAP_FILLING = 'gap_filling'


class GapSeverity(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


# ============================================================================
# Content and Users
# ============================================================================

@dataclass
class ContentItem:
    """Catalog entry."""
    id: str
    title: str
    subject: str
    topic: str
    difficulty: Difficulty
    content_type: str = 'Text'          # Video | Text | Quiz | Interactive
    duration_minutes: float = 0.0
    tags: List[str] = field(default_factory=list)
    popularity: float = 0.0             # [0, 1]
    embedding: Optional[np.ndarray] = None
    grade: Optional[int] = None

    def __post_init__(self):
        self.difficulty = Difficulty(self.difficulty)
        self.tags = list(self.tags or [])

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'subject': self.subject,
            'topic': self.topic,
            'difficulty': self.difficulty.value,
            'content_type': self.content_type,
            'duration_minutes': float(self.duration_minutes),
            'tags': list(self.tags),
            'popularity': float(self.popularity),
            'grade': self.grade,
        }


@dataclass
class InteractionEvent:
    """A user action on a content item."""
    user_id: str
    content_id: str
    action: InteractionAction
    timestamp: datetime
    score: Optional[float] = None       # 0-100, e.g. quiz result
    time_spent: float = 0.0             # seconds

    def __post_init__(self):
        self.action = InteractionAction(self.action)
        # Interaction timestamps are compared as naive local time
        if self.timestamp.tzinfo is not None:
            self.timestamp = self.timestamp.astimezone().replace(tzinfo=None)


@dataclass
class UserProfile:
    user_id: str
    grade: Optional[int] = None
    board: Optional[str] = None
    subjects: List[str] = field(default_factory=list)
    learning_style: str = 'visual'
    strengths: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    interests: List[str] = field(default_factory=list)
    goals: List[str] = field(default_factory=list)
    study_time_minutes: float = 60.0


@dataclass
class LearningGap:
    """Externally computed gap in a user's mastery of a topic."""
    topic: str
    subject: str
    severity: GapSeverity
    priority: int                        # 1-10, 1 is most urgent
    remedial_content: List[str] = field(default_factory=list)
    estimated_minutes: float = 0.0

    def __post_init__(self):
        self.severity = GapSeverity(self.severity)


@dataclass
class ExamTarget:
    subject: str
    topics: List[str] = field(default_factory=list)
    date: Optional[datetime] = None


# ============================================================================
# Recommendations
# ============================================================================

@dataclass
class RecommendationFactor:
    factor: str
    weight: float
    contribution: float


@dataclass
class RecommendationReason:
    primary: str
    factors: List[RecommendationFactor] = field(default_factory=list)


@dataclass
class Recommendation:
    """A ranked, explained recommendation."""
    content: ContentItem
    score: float
    reasoning: RecommendationReason
    type: RecommendationType
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'content': self.content.to_dict(),
            'score': float(self.score),
            'reasoning': {
                'primary': self.reasoning.primary,
                'factors': [
                    {'factor': f.factor, 'weight': float(f.weight), 'contribution': float(f.contribution)}
                    for f in self.reasoning.factors
                ],
            },
            'type': self.type.value,
            'confidence': float(self.confidence),
        }
