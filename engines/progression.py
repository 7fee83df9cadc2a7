"""XP and reward ledger for roadmap progress.

The ledger records which levels of each roadmap a learner has completed and
the latest quiz result per level. Every mutation re-evaluates the reward
catalogue, so thresholds are awarded as soon as they are crossed. Guests
keep their ledger in a JSON file per visitor; signed-in users have it
mirrored to the ``users`` and ``user_progress`` tables.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import db
from schemas import QuizResult, RoadmapProgress, UserProgress

_LOGGER = logging.getLogger(__name__)

XP_PER_LEVEL = 200


@dataclass(frozen=True)
class Reward:
    """A milestone badge shown on the dashboard."""

    id: str
    name: str
    description: str
    icon: str
    xp_threshold: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "xpThreshold": self.xp_threshold,
        }


REWARDS: Tuple[Reward, ...] = (
    Reward("first-quiz", "Quiz Rookie", "Complete your first quiz", "fa-star"),
    Reward("xp-500", "Rising Star", "Earn 500 XP", "fa-fire", 500),
    Reward("xp-1000", "Knowledge Seeker", "Earn 1,000 XP", "fa-gem", 1000),
    Reward("xp-2500", "AI Apprentice", "Earn 2,500 XP", "fa-rocket", 2500),
    Reward("xp-5000", "Neural Knight", "Earn 5,000 XP", "fa-crown", 5000),
    Reward("xp-10000", "AI Oracle", "Earn 10,000 XP", "fa-brain", 10000),
    Reward("perfect-quiz", "Perfectionist", "Score 100% on a quiz", "fa-bullseye"),
    Reward("three-roadmaps", "Explorer", "Complete 3 different roadmaps", "fa-compass"),
)

# (minimum level, rank), highest first
RANKS: Tuple[Tuple[int, str], ...] = (
    (50, "AI Oracle"),
    (25, "Neural Knight"),
    (12, "AI Apprentice"),
    (5, "Knowledge Seeker"),
)
DEFAULT_RANK = "Beginner"


def level_for_xp(xp: int) -> int:
    return max(int(xp), 0) // XP_PER_LEVEL + 1


def rank_for_level(level: int) -> str:
    for minimum, name in RANKS:
        if level >= minimum:
            return name
    return DEFAULT_RANK


class ProgressLedger:
    """Mutations over a single learner's :class:`UserProgress`.

    Parameters
    ----------
    progress:
        The record to mutate in place. A fresh empty record is created for
        ``visitor_id`` when omitted.
    visitor_id:
        Identifier used for a fresh record.
    """

    def __init__(self, progress: Optional[UserProgress] = None, *, visitor_id: str = "") -> None:
        self.progress = progress if progress is not None else UserProgress(visitor_id=visitor_id)

    # ------------------------------------------------------------------
    def _roadmap(self, roadmap_id: str, topic: str) -> RoadmapProgress:
        entry = self.progress.find_roadmap(roadmap_id)
        if entry is None:
            entry = RoadmapProgress(roadmap_id=roadmap_id, topic=topic)
            self.progress.roadmaps.append(entry)
        return entry

    def _grant(self, reward_id: str) -> bool:
        if reward_id in self.progress.rewards:
            return False
        self.progress.rewards.append(reward_id)
        _LOGGER.info("Reward %s earned by %s", reward_id, self.progress.visitor_id)
        return True

    def check_rewards(self) -> List[str]:
        """Award every reward whose condition now holds; return the new ids."""
        granted: List[str] = []
        started = sum(1 for entry in self.progress.roadmaps if entry.completed_levels)
        for reward in REWARDS:
            if reward.id in self.progress.rewards:
                continue
            if reward.xp_threshold > 0 and self.progress.total_xp >= reward.xp_threshold:
                if self._grant(reward.id):
                    granted.append(reward.id)
            elif reward.id == "three-roadmaps" and started >= 3:
                if self._grant(reward.id):
                    granted.append(reward.id)
        return granted

    # ------------------------------------------------------------------
    def complete_level(self, roadmap_id: str, topic: str, level_id: str, xp_reward: int) -> bool:
        """Mark ``level_id`` complete. XP is only added the first time.

        Returns ``True`` when the level was newly completed.
        """
        entry = self._roadmap(roadmap_id, topic)
        newly = level_id not in entry.completed_levels
        if newly:
            entry.completed_levels.append(level_id)
            self.progress.total_xp += max(int(xp_reward), 0)
        self.check_rewards()
        return newly

    def save_quiz_result(self, roadmap_id: str, topic: str, result: QuizResult) -> None:
        entry = self._roadmap(roadmap_id, topic)
        for index, existing in enumerate(entry.quiz_results):
            if existing.level_id == result.level_id:
                entry.quiz_results[index] = result
                break
        else:
            entry.quiz_results.append(result)
            self._grant("first-quiz")
        if result.perfect:
            self._grant("perfect-quiz")
        self.check_rewards()

    # ------------------------------------------------------------------
    @property
    def total_xp(self) -> int:
        return self.progress.total_xp

    def level(self) -> int:
        return level_for_xp(self.progress.total_xp)

    def rank(self) -> str:
        return rank_for_level(self.level())

    def earned_rewards(self) -> List[Reward]:
        return [reward for reward in REWARDS if reward.id in self.progress.rewards]

    def summary(self) -> Dict[str, Any]:
        data = self.progress.model_dump(by_alias=True)
        data.update(
            level=self.level(),
            rank=self.rank(),
            earnedRewards=[reward.as_dict() for reward in self.earned_rewards()],
        )
        return data


def score_quiz(questions: Sequence[Mapping[str, Any]], answers: Sequence[int], level_id: str) -> QuizResult:
    """Grade ``answers`` against each question's ``correctIndex``."""
    score = 0
    for index, question in enumerate(questions):
        if index < len(answers) and answers[index] == question.get("correctIndex"):
            score += 1
    return QuizResult(
        level_id=level_id,
        score=score,
        total=len(questions),
        answers=list(answers),
        submitted_at=datetime.now(timezone.utc).isoformat(),
    )


# ---------------------------------------------------------------------------
# guest persistence
_VISITOR_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class ProgressStore:
    """Stores one JSON ledger per visitor id under ``root``."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, visitor_id: str) -> Path:
        if not _VISITOR_ID.match(visitor_id or ""):
            raise ValueError(f"Invalid visitor id: {visitor_id!r}")
        return self.root / f"{visitor_id}.json"

    def load(self, visitor_id: str) -> ProgressLedger:
        path = self._path(visitor_id)
        if not path.exists():
            return ProgressLedger(visitor_id=visitor_id)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            progress = UserProgress.model_validate(payload)
        except (OSError, ValueError) as exc:
            _LOGGER.warning("Discarding unreadable progress for %s: %s", visitor_id, exc)
            return ProgressLedger(visitor_id=visitor_id)
        return ProgressLedger(progress)

    def save(self, ledger: ProgressLedger) -> None:
        path = self._path(ledger.progress.visitor_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(
            json.dumps(ledger.progress.model_dump(by_alias=True), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        tmp.replace(path)


# ---------------------------------------------------------------------------
# signed-in persistence
def load_user_progress(user_id: int) -> ProgressLedger:
    """Rebuild a ledger from the relational store."""
    user = db.get_user(user_id)
    if user is None:
        raise LookupError(f"Unknown user {user_id}")
    roadmaps: List[RoadmapProgress] = []
    for row in db.list_progress(user_id):
        roadmap = db.get_roadmap(row["roadmap_id"])
        results = []
        for item in row.get("quiz_results") or []:
            try:
                results.append(QuizResult.model_validate(item))
            except ValueError:
                _LOGGER.warning("Skipping malformed quiz result for user %s: %r", user_id, item)
        roadmaps.append(
            RoadmapProgress(
                roadmap_id=str(row["roadmap_id"]),
                topic=(roadmap or {}).get("topic", ""),
                completed_levels=list(row.get("completed_levels") or []),
                quiz_results=results,
            )
        )
    progress = UserProgress(
        visitor_id=str(user_id),
        roadmaps=roadmaps,
        total_xp=int(user.get("xp") or 0),
        rewards=list(user.get("rewards") or []),
    )
    return ProgressLedger(progress)


def save_user_progress(user_id: int, ledger: ProgressLedger, roadmap_id: int) -> None:
    entry = ledger.progress.find_roadmap(str(roadmap_id))
    if entry is not None:
        db.upsert_progress(
            user_id,
            roadmap_id,
            entry.completed_levels,
            [result.model_dump(by_alias=True) for result in entry.quiz_results],
        )
    db.update_user_xp(user_id, ledger.total_xp, ledger.progress.rewards)


def mirror_to_db(user_id: Optional[int], ledger: ProgressLedger, roadmap_id: Optional[int]) -> bool:
    """Best-effort copy of a ledger to the relational store.

    Returns ``False`` when nothing was written.
    """
    if user_id is None or roadmap_id is None:
        return False
    try:
        save_user_progress(user_id, ledger, roadmap_id)
    except sqlite3.Error as exc:
        _LOGGER.warning("Could not mirror progress of user %s: %s", user_id, exc)
        return False
    return True


__all__ = [
    "REWARDS",
    "RANKS",
    "Reward",
    "ProgressLedger",
    "ProgressStore",
    "level_for_xp",
    "rank_for_level",
    "score_quiz",
    "load_user_progress",
    "save_user_progress",
    "mirror_to_db",
]
