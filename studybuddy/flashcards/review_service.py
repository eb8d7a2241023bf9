from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from studybuddy.models import ReviewEvent, ReviewState, as_utc
from studybuddy.utils.logger import get_logger, log_review

from .spaced_repetition import Rating, advance

LOG = get_logger()

DEFAULT_QUEUE_LIMIT = 20


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def state_to_dict(state: ReviewState) -> dict:
    return {
        'ease_factor': state.ease_factor,
        'interval_days': state.interval_days,
        'repetitions': state.repetitions,
        'due_at': _iso(state.due_at),
        'last_reviewed_at': _iso(state.last_reviewed_at),
    }


@dataclass
class DailyQueue:
    cards: List[dict] = field(default_factory=list)
    due_count: int = 0
    due_tomorrow_count: int = 0

    def to_dict(self) -> dict:
        cards = []
        for card in self.cards:
            item = dict(card)
            item['review_state'] = state_to_dict(card['review_state'])
            cards.append(item)
        return {'cards': cards, 'due_count': self.due_count, 'due_tomorrow_count': self.due_tomorrow_count}


class ReviewService:
    """Records reviews for an explicit user and builds that user's daily queue."""

    def __init__(self, states):
        self.states = states

    def record_review(self, user_id: str, item_id: str, rating, now: Optional[datetime] = None) -> ReviewState:
        rating = Rating.parse(rating)
        now = as_utc(now)
        previous = self.states.get(user_id, item_id) or ReviewState.initial(now)
        updated = advance(previous, rating, now)

        actual = None
        if previous.last_reviewed_at is not None:
            elapsed_days = (now - previous.last_reviewed_at).total_seconds() / 86400
            actual = max(0, int(elapsed_days + 0.5))

        event = ReviewEvent(
            user_id=user_id,
            item_id=item_id,
            rating=rating.value,
            scheduled_interval_days=updated.interval_days,
            actual_interval_days=actual,
            occurred_at=now,
        )
        self.states.save_review(user_id, item_id, updated, event)
        log_review(user_id, item_id, rating.value, updated.interval_days, updated.ease_factor)
        return updated

    def daily_queue(self, user_id: str, now: Optional[datetime] = None, limit: int = DEFAULT_QUEUE_LIMIT) -> DailyQueue:
        now = as_utc(now)
        cards = self.states.due_cards(user_id, now, limit)
        due_count = self.states.count_due(user_id, None, now)
        due_tomorrow = self.states.count_due(user_id, now, now + timedelta(days=1))
        LOG.debug('daily_queue_built', extra={'user_id': user_id, 'cards': len(cards), 'due_count': due_count})
        return DailyQueue(cards=cards, due_count=due_count, due_tomorrow_count=due_tomorrow)
