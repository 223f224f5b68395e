import pytest

from sat_mirror.routing import (
    FULL_RESULTS,
    MATH_RESULTS,
    ROUTING_TABLE,
    Destination,
    Route,
    route_after_submit,
)


@pytest.mark.parametrize(
    "module_number,completed,expected",
    [
        (1, {1}, Route.intro(2)),
        (1, {1, 3}, Route.intro(2)),
        (2, {1, 2}, Route.intro(3)),
        (2, {1, 2, 3}, Route.intro(4)),
        (2, {2, 4}, Route.intro(3)),
        (3, {3}, Route.intro(4)),
        (3, {1, 2, 3}, Route.intro(4)),
        (4, {1, 2, 4}, FULL_RESULTS),
        (4, {2, 3, 4}, MATH_RESULTS),
        (4, {3, 4}, MATH_RESULTS),
        (4, {4}, MATH_RESULTS),
    ],
)
def test_route_after_submit(module_number, completed, expected):
    assert route_after_submit(module_number, completed) == expected


@pytest.mark.parametrize("module_number", [1, 2, 3, 4])
def test_all_modules_complete_goes_to_full_results(module_number):
    assert route_after_submit(module_number, {1, 2, 3, 4}) == FULL_RESULTS


def test_unknown_module():
    with pytest.raises(ValueError):
        route_after_submit(5, {1})


def test_every_module_has_a_fallback_row():
    for rows in ROUTING_TABLE.values():
        assert not rows[-1].requires_complete
        assert not rows[-1].requires_incomplete


def test_route_labels():
    assert str(Route.intro(3)) == "module 3 intro"
    assert str(FULL_RESULTS) == "full results"
    assert Route.intro(2).destination == Destination.MODULE_INTRO
    assert not Route.intro(2).is_results
    assert MATH_RESULTS.is_results
