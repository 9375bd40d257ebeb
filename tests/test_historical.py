import pytest

from expert_match.historical import HistoricalPerformanceScorer
from expert_match.models import ClinicalExperience


def _exp(idx: int, outcome: str = "SUCCESS", rating=5, complications=None, complexity="MEDIUM"):
    return ClinicalExperience(
        id=f"e{idx}",
        doctor_id="d1",
        case_id=f"p{idx}",
        complexity_level=complexity,
        outcome=outcome,
        complications=list(complications or []),
        rating=rating,
    )


def test_no_history_is_neutral() -> None:
    assert HistoricalPerformanceScorer().score([]) == 0.5


def test_perfect_history_scores_one() -> None:
    scorer = HistoricalPerformanceScorer()
    assert scorer.score([_exp(1), _exp(2)]) == pytest.approx(1.0)


def test_unrated_history_uses_neutral_rating() -> None:
    scorer = HistoricalPerformanceScorer()
    value = scorer.score([_exp(1, rating=None)])
    assert value == pytest.approx(0.5 * 1.0 + 0.35 * 0.5 + 0.15 * 1.0)


def test_score_is_monotonic_in_rating_and_outcome() -> None:
    scorer = HistoricalPerformanceScorer()
    low = scorer.score([_exp(1, rating=2), _exp(2, outcome="STABLE", rating=3)])
    better_rating = scorer.score([_exp(1, rating=4), _exp(2, outcome="STABLE", rating=3)])
    better_outcome = scorer.score([_exp(1, rating=2), _exp(2, outcome="SUCCESS", rating=3)])

    assert better_rating > low
    assert better_outcome > low


def test_complications_lower_the_score() -> None:
    scorer = HistoricalPerformanceScorer()
    clean = scorer.score([_exp(1), _exp(2)])
    complicated = scorer.score([_exp(1, complications=["bleeding"]), _exp(2)])
    assert complicated < clean


def test_score_stays_in_bounds() -> None:
    scorer = HistoricalPerformanceScorer()
    worst = scorer.score([_exp(1, outcome="DECEASED", rating=1, complications=["x"])])
    assert 0.0 <= worst <= 1.0
    assert worst == pytest.approx(0.0)


def test_score_many_pools_histories() -> None:
    scorer = HistoricalPerformanceScorer()
    pooled = scorer.score_many([[_exp(1)], [_exp(2, outcome="FAILED", rating=1)]])
    assert pooled == scorer.score([_exp(1), _exp(2, outcome="FAILED", rating=1)])
    assert scorer.score_many([[], []]) == 0.5
