"""Tests outside tests/cli are collected as unit tests."""


def test_marked_as_unit(request):
    assert request.node.get_closest_marker("unit") is not None
    assert request.node.get_closest_marker("cli") is None
