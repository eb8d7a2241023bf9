"""
Spaced repetition (SM-2) scheduling and the review service.
"""

from .review_service import DailyQueue, ReviewService, state_to_dict
from .spaced_repetition import MIN_EASE, Rating, advance

__all__ = [
	'DailyQueue',
	'ReviewService',
	'state_to_dict',
	'MIN_EASE',
	'Rating',
	'advance',
]
