"""Pydantic schemas for progress records and API payloads."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "ChatMessage",
    "QuizResult",
    "RoadmapProgress",
    "UserProgress",
    "ExecutionResult",
]


class _CamelModel(BaseModel):
    """Stored progress uses the camelCase keys the web client keeps in local storage."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class QuizResult(_CamelModel):
    level_id: str
    score: int
    total: int
    answers: List[int] = Field(default_factory=list)
    submitted_at: str

    @property
    def perfect(self) -> bool:
        # an empty 0/0 result posted to the guest ledger is not a perfect score
        return self.total > 0 and self.score == self.total


class RoadmapProgress(_CamelModel):
    roadmap_id: str
    topic: str
    completed_levels: List[str] = Field(default_factory=list)
    quiz_results: List[QuizResult] = Field(default_factory=list)


class UserProgress(_CamelModel):
    visitor_id: str
    roadmaps: List[RoadmapProgress] = Field(default_factory=list)
    total_xp: int = 0
    rewards: List[str] = Field(default_factory=list)

    def find_roadmap(self, roadmap_id: str) -> Optional[RoadmapProgress]:
        for entry in self.roadmaps:
            if entry.roadmap_id == roadmap_id:
                return entry
        return None


class ExecutionResult(_CamelModel):
    stdout: str = ""
    stderr: str = ""
    exit_code: int = -1
    signal: Optional[str] = None
    language: str
    version: str

    def combined_output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)
