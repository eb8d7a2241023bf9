from datetime import timedelta

import pytest

from studybuddy.errors import InvalidRating
from studybuddy.flashcards.spaced_repetition import MIN_EASE, Rating, advance
from studybuddy.models import ReviewState


@pytest.mark.unit
def test_good_three_times_reference_trajectory(now):
    state = ReviewState.initial(now)
    state = advance(state, 'Good', now)
    assert (state.repetitions, state.interval_days, state.ease_factor) == (1, 1, 2490)
    assert state.due_at == now + timedelta(days=1)

    day1 = now + timedelta(days=1)
    state = advance(state, 'Good', day1)
    assert (state.repetitions, state.interval_days, state.ease_factor) == (2, 6, 2480)
    assert state.due_at == day1 + timedelta(days=6)

    day7 = now + timedelta(days=7)
    state = advance(state, 'Good', day7)
    # round(6 * 2.48) with the ease from before this review
    assert (state.repetitions, state.interval_days, state.ease_factor) == (3, 15, 2470)
    assert state.due_at == day7 + timedelta(days=15)
    assert state.last_reviewed_at == day7


@pytest.mark.unit
@pytest.mark.parametrize('rating, expected_ease', [('Hard', 2450), ('Good', 2490), ('Easy', 2530)])
def test_ease_adjustment_per_rating(now, rating, expected_ease):
    state = advance(ReviewState.initial(now), rating, now)
    assert state.ease_factor == expected_ease
    assert state.interval_days == 1


@pytest.mark.unit
def test_again_resets_repetitions_and_keeps_ease(now):
    state = ReviewState(ease_factor=2100, interval_days=40, repetitions=5, due_at=now, last_reviewed_at=now - timedelta(days=40))
    after = advance(state, Rating.AGAIN, now)
    assert after.repetitions == 0
    assert after.interval_days == 1
    assert after.ease_factor == 2100
    assert after.due_at == now + timedelta(days=1)
    assert after.last_reviewed_at == now


@pytest.mark.unit
def test_ease_never_drops_below_floor(now):
    ease = 2500
    for _ in range(40):
        state = ReviewState(ease_factor=ease, interval_days=1, repetitions=0, due_at=now)
        ease = advance(state, 'Hard', now).ease_factor
        assert ease >= MIN_EASE
    assert ease == MIN_EASE


@pytest.mark.unit
def test_interval_rounds_half_up(now):
    # 5 * 2.5 = 12.5 -> 13
    state = ReviewState(ease_factor=2500, interval_days=5, repetitions=2, due_at=now)
    assert advance(state, 'Easy', now).interval_days == 13


@pytest.mark.unit
def test_advance_does_not_mutate_input(now):
    state = ReviewState.initial(now)
    advance(state, 'Easy', now)
    assert state == ReviewState.initial(now)


@pytest.mark.unit
@pytest.mark.parametrize('bad', ['good', 'AGAIN', '', None, 3, 'Perfect'])
def test_unknown_rating_rejected(now, bad):
    with pytest.raises(InvalidRating):
        advance(ReviewState.initial(now), bad, now)


@pytest.mark.unit
def test_is_due(now):
    state = ReviewState(ease_factor=2500, interval_days=1, repetitions=1, due_at=now)
    assert state.is_due(now)
    assert not state.is_due(now - timedelta(seconds=1))
