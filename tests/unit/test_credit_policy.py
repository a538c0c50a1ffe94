"""Unit tests for credit limit policy arithmetic"""

from formbank.domain.credit_policy import apply_increases, count_increases, threshold


def test_thresholds_are_triangular_steps_of_250():
    """Test 250, 750, 1500, 2500 sequence"""
    assert [threshold(i) for i in range(1, 5)] == [250, 750, 1500, 2500]


def test_total_of_1000_crosses_two_thresholds():
    """Test 250 and 750 are crossed but 1500 is not"""
    new_limit, new_count, increments = apply_increases(250, 0, 1000)

    assert increments == 2
    assert new_limit == 750
    assert new_count == 2


def test_reaching_threshold_exactly_counts():
    """Test threshold is inclusive"""
    assert count_increases(250, 0) == 1
    assert count_increases(249, 0) == 0


def test_existing_increases_are_not_reapplied():
    """Test policy starts counting from the stored increase count"""
    assert count_increases(1000, 2) == 0
    assert count_increases(1500, 2) == 1


def test_policy_is_idempotent():
    """Test second application with same total yields no increments"""
    limit, count, first = apply_increases(250, 0, 2600)
    again_limit, again_count, second = apply_increases(limit, count, 2600)

    assert first == 4
    assert second == 0
    assert (again_limit, again_count) == (limit, count) == (1250, 4)


def test_no_repayment_no_increase():
    assert apply_increases(250, 0, 0) == (250, 0, 0)
