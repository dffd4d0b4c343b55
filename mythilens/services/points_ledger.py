from enum import Enum
from typing import Dict, List, Sequence, Tuple, Union

class ActionKind(str, Enum):
    SCAN = "scan"
    TRANSLATION = "translation"
    CONTRIBUTION = "contribution"
    REVIEW_WITHOUT_PHOTO = "review_without_photo"
    REVIEW_WITH_PHOTO = "review_with_photo"
    QUESTION = "question"
    HELPFUL_VOTE = "helpful_vote"
    QUIZ_CORRECT = "quiz_correct"
    STEP_COMPLETION = "step_completion"
    PATH_COMPLETION = "path_completion"

class UnrecognizedActionError(ValueError):
    def __init__(self, action):
        super().__init__(f"unrecognized action: {action!r}")
        self.action = action

class PointsLedger:
    """Fixed point table for gamified actions, plus badge bookkeeping."""

    POINTS: Dict[ActionKind, int] = {
        ActionKind.SCAN: 10,
        ActionKind.TRANSLATION: 15,
        ActionKind.CONTRIBUTION: 25,
        ActionKind.REVIEW_WITHOUT_PHOTO: 15,
        ActionKind.REVIEW_WITH_PHOTO: 20,
        ActionKind.QUESTION: 5,
        ActionKind.HELPFUL_VOTE: 2,
        ActionKind.QUIZ_CORRECT: 10,
        ActionKind.STEP_COMPLETION: 5,
        ActionKind.PATH_COMPLETION: 50,
    }

    @staticmethod
    def parse_action(action: Union[ActionKind, str]) -> ActionKind:
        if isinstance(action, ActionKind):
            return action
        try:
            return ActionKind(action)
        except ValueError:
            raise UnrecognizedActionError(action) from None

    @classmethod
    def points_for(cls, action: Union[ActionKind, str]) -> int:
        return cls.POINTS[cls.parse_action(action)]

    @classmethod
    def award(cls, current_points: int, action: Union[ActionKind, str]) -> int:
        return current_points + cls.points_for(action)

    @classmethod
    def point_table(cls) -> Dict[str, int]:
        return {kind.value: points for kind, points in cls.POINTS.items()}

    @staticmethod
    def add_badge(badges: Sequence[str], badge: str) -> Tuple[List[str], bool]:
        """
        Append badge unless already earned. Returns the new ordered badge
        list and whether anything was added.
        """
        if not badge or not badge.strip():
            raise ValueError("badge name must not be blank")
        badge = badge.strip()
        current = list(badges)
        if badge in current:
            return current, False
        current.append(badge)
        return current, True
