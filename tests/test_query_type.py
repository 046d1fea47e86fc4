from minequery.planner.query_type import GENERIC, detect_query_type


def test_query_types():
    assert detect_query_type("daily production trend for March") == 'time_series'
    assert detect_query_type("distribution of tonnage by excavator") == 'distribution'
    assert detect_query_type("compare EX-189 vs EX-141") == 'comparison'
    assert detect_query_type("which tippers worked with which excavators") == 'equipment_combo'
    assert detect_query_type("production per shift") == 'shift_grouping'
    assert detect_query_type("total tonnage in 2024") == 'summary'


def test_first_match_wins():
    # a monthly breakdown is a time series before it is a distribution
    assert detect_query_type("monthly breakdown of tonnage") == 'time_series'


def test_generic():
    assert detect_query_type("show production on 2025-01-02") == GENERIC
    assert detect_query_type(None) == GENERIC
