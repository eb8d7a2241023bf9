"""SM-2 scheduling over fixed-point ease factors (2500 == 2.5).

`advance` is a pure transition: the interval for the third and later successful
reviews is computed from the ease factor *before* this review's ease update.
"""
from __future__ import annotations

import math
from datetime import datetime, timedelta
from enum import Enum

from studybuddy.errors import InvalidRating
from studybuddy.models import ReviewState

MIN_EASE = 1300

# quality score per successful rating
QUALITY = {'Hard': 3, 'Good': 4, 'Easy': 5}


class Rating(str, Enum):
    AGAIN = 'Again'
    HARD = 'Hard'
    GOOD = 'Good'
    EASY = 'Easy'

    @classmethod
    def parse(cls, value) -> 'Rating':
        if isinstance(value, cls):
            return value
        for rating in cls:
            if value == rating.value:
                return rating
        raise InvalidRating(f'rating must be one of Again, Hard, Good, Easy; got {value!r}')


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def next_ease(ease_factor: int, quality: int) -> int:
    return max(ease_factor + quality * 10 - 80 + (quality - 3) * 30, MIN_EASE)


def advance(state: ReviewState, rating, now: datetime) -> ReviewState:
    rating = Rating.parse(rating)

    if rating == Rating.AGAIN:
        repetitions = 0
        interval = 1
        ease = state.ease_factor
    else:
        repetitions = state.repetitions + 1
        if repetitions == 1:
            interval = 1
        elif repetitions == 2:
            interval = 6
        else:
            interval = round_half_up(state.interval_days * state.ease_factor / 1000)
        ease = next_ease(state.ease_factor, QUALITY[rating.value])

    return ReviewState(
        ease_factor=ease,
        interval_days=interval,
        repetitions=repetitions,
        due_at=now + timedelta(days=interval),
        last_reviewed_at=now,
    )
