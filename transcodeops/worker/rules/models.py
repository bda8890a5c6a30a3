"""
Core models for workflow matching.
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field
from ulid import ULID


class CriteriaKey(str, Enum):
    """Media attribute a criteria inspects"""
    media_title = "media_title"
    series_title = "series_title"
    season_title = "season_title"
    resolution = "resolution"
    season_number = "season_number"
    episode_number = "episode_number"
    source_path = "source_path"
    source_name = "source_name"
    source_extension = "source_extension"
    video_codec = "video_codec"
    container = "container"
    duration = "duration"


class CriteriaType(str, Enum):
    """Comparison a criteria performs"""
    equals = "equals"
    not_equals = "not_equals"
    matches = "matches"
    does_not_match = "does_not_match"
    less_than = "less_than"
    greater_than = "greater_than"
    is_present = "is_present"
    is_not_present = "is_not_present"


class CombineType(str, Enum):
    """How a criteria folds into the result of the criteria before it"""
    AND = "and"
    OR = "or"


STRING_KEYS = frozenset({
    CriteriaKey.media_title,
    CriteriaKey.series_title,
    CriteriaKey.season_title,
    CriteriaKey.source_path,
    CriteriaKey.source_name,
    CriteriaKey.source_extension,
    CriteriaKey.video_codec,
    CriteriaKey.container,
})

NUMERIC_KEYS = frozenset({
    CriteriaKey.resolution,
    CriteriaKey.season_number,
    CriteriaKey.episode_number,
    CriteriaKey.duration,
})

PRESENCE_TYPES = frozenset({CriteriaType.is_present, CriteriaType.is_not_present})

ACCEPTABLE_TYPES: Dict[CriteriaKey, frozenset] = {
    **{key: frozenset({
        CriteriaType.equals,
        CriteriaType.not_equals,
        CriteriaType.matches,
        CriteriaType.does_not_match,
    }) | PRESENCE_TYPES for key in STRING_KEYS},
    **{key: frozenset({
        CriteriaType.equals,
        CriteriaType.not_equals,
        CriteriaType.less_than,
        CriteriaType.greater_than,
    }) | PRESENCE_TYPES for key in NUMERIC_KEYS},
}


class Criteria(BaseModel):
    """One eligibility rule, e.g. 'resolution equals 1080p AND'"""
    id: str = Field(default_factory=lambda: str(ULID()))
    workflow_id: Optional[str] = None
    key: CriteriaKey
    type: CriteriaType
    value: str = ""
    combine_type: CombineType = CombineType.AND

    def __str__(self) -> str:
        return f"Criteria({self.key.value} {self.type.value} '{self.value}' {self.combine_type.value})"


class Workflow(BaseModel):
    """Ordered criteria plus the targets applied to media that satisfy them"""
    id: str = Field(default_factory=lambda: str(ULID()))
    label: str
    enabled: bool = True
    criteria: List[Criteria] = Field(default_factory=list)
    target_ids: List[str] = Field(default_factory=list)


@dataclass
class Media:
    """Probed media item as seen by the engine. Owned by the media catalog."""
    id: str
    source_path: str
    title: Optional[str] = None
    duration: Optional[float] = None      # seconds
    width: Optional[int] = None
    height: Optional[int] = None
    video_codec: Optional[str] = None
    container: Optional[str] = None
    series_title: Optional[str] = None
    season_title: Optional[str] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def source_name(self) -> str:
        return os.path.basename(self.source_path)

    @property
    def source_extension(self) -> str:
        return os.path.splitext(self.source_path)[1]

    @property
    def resolution(self) -> Optional[str]:
        """Resolution label such as '1080p', derived from the frame height"""
        if self.height is None:
            return None
        return f"{self.height}p"

    def attribute(self, key: CriteriaKey) -> Any:
        """Value of the attribute a criteria key selects, None when unknown"""
        if key == CriteriaKey.media_title:
            return self.title
        if key == CriteriaKey.series_title:
            return self.series_title
        if key == CriteriaKey.season_title:
            return self.season_title
        if key == CriteriaKey.resolution:
            return self.height
        if key == CriteriaKey.season_number:
            return self.season_number
        if key == CriteriaKey.episode_number:
            return self.episode_number
        if key == CriteriaKey.source_path:
            return self.source_path
        if key == CriteriaKey.source_name:
            return self.source_name
        if key == CriteriaKey.source_extension:
            return self.source_extension
        if key == CriteriaKey.video_codec:
            return self.video_codec
        if key == CriteriaKey.container:
            return self.container
        if key == CriteriaKey.duration:
            return self.duration
        return None

    def __str__(self) -> str:
        return f"Media{{id={self.id} source={self.source_path}}}"
