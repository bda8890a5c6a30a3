from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from ulid import ULID

from .options import Options

DEFAULT_THREADS_REQUIRED = 2


class Target(BaseModel):
    """Named output encoding profile. Shared by id and never mutated through a task."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(ULID()))
    label: str
    extension: str = Field(..., min_length=1, description="Output file extension without the dot")
    options: Options = Field(default_factory=Options)

    @field_validator("extension")
    @classmethod
    def strip_dot(cls, v: str) -> str:
        return v.lstrip(".")

    @property
    def required_threads(self) -> int:
        threads: Optional[int] = self.options.threads
        if threads is not None and threads > 0:
            return threads
        return DEFAULT_THREADS_REQUIRED

    def with_options(self, options: Options) -> "Target":
        """Copy of this target using a different option set"""
        return self.model_copy(update={"options": options})

    def __str__(self) -> str:
        return f"Target{{id={self.id} label={self.label}}}"
