import pytest
from routing_doubles import make_route

from pathfinder.routing import RoutePreferences, score_route, select_best_route
from pathfinder.routing.scoring import MAX_DURATION

DRIVING = RoutePreferences(mode="driving")
WALKING = RoutePreferences(mode="walking")
BICYCLING = RoutePreferences(mode="bicycling")
TRANSIT = RoutePreferences(mode="transit")


def test_score_range():
    assert score_route(make_route(0, 0), DRIVING) == 100.0
    assert score_route(make_route(0, 0), WALKING) == 150.0
    assert score_route(make_route(MAX_DURATION * 2, 0), DRIVING) == 0.0


@pytest.mark.parametrize("preferences", [DRIVING, WALKING], ids=["driving", "walking"])
def test_shorter_duration_never_scores_lower(preferences):
    durations = [0, 60, 600, 1800, 3600, 7199, 7200, 9000]
    scores = [score_route(make_route(d, 1000), preferences) for d in durations]
    assert scores == sorted(scores, reverse=True)


def test_distance_only_counts_for_human_powered_modes():
    short, long = make_route(600, 1000), make_route(600, 40000)

    assert score_route(short, DRIVING) == score_route(long, DRIVING)
    assert score_route(short, TRANSIT) == score_route(long, TRANSIT)
    assert score_route(short, WALKING) > score_route(long, WALKING)
    assert score_route(short, BICYCLING) > score_route(long, BICYCLING)


def test_traffic_and_warnings_are_penalised():
    plain = score_route(make_route(600, 1000), DRIVING)

    assert score_route(make_route(600, 1000, traffic_multiplier=1.5), DRIVING) == pytest.approx(plain - 15)
    assert score_route(make_route(600, 1000, warnings=["Toll road", "Ferry"]), DRIVING) == pytest.approx(plain - 20)
    assert score_route(make_route(600, 1000, traffic_multiplier=1.0), DRIVING) == pytest.approx(plain)


def test_score_floor_is_zero():
    route = make_route(7000, 1000, warnings=["w"] * 5, traffic_multiplier=3.0)
    assert score_route(route, DRIVING) == 0.0


def test_select_best_route_prefers_faster():
    slow, fast = make_route(1200, 1000), make_route(600, 1500)
    assert select_best_route([slow, fast], DRIVING) is fast


def test_select_best_route_tie_goes_to_first():
    first, second = make_route(600, 1000, geometry="first"), make_route(600, 1000, geometry="second")
    assert select_best_route([first, second], DRIVING) is first


def test_select_best_route_is_repeatable():
    candidates = [make_route(900, 5000), make_route(700, 5200, warnings=["Toll road"]), make_route(800, 4000)]
    assert select_best_route(candidates, DRIVING) is select_best_route(candidates, DRIVING)


def test_select_best_route_single_candidate():
    only = make_route(600, 1000)
    assert select_best_route([only], DRIVING) is only


def test_select_best_route_empty():
    with pytest.raises(ValueError):
        select_best_route([], DRIVING)
