import math

import pytest

from pulse.vectors import as_array, cosine, is_usable, normalize


def test_normalize_and_usable():
    assert normalize([3.0, 4.0]) == pytest.approx([0.6, 0.8])
    assert normalize([0.0, 0.0]) == [0.0, 0.0]
    assert is_usable([0.1, 0.0])
    assert not is_usable([0.0, 0.0, 0.0])
    assert not is_usable([math.nan, 1.0])
    assert not is_usable([])
    assert not is_usable(None)
    assert as_array([math.inf]) is None


def test_cosine():
    assert cosine([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
    assert cosine([1.0, 0.0], [0.0, 3.0]) == pytest.approx(0.0)
    assert cosine([1.0, 0.0], [0.0, 0.0]) is None
    assert cosine(None, [1.0]) is None


def test_cosine_rejects_mismatched_dimensions():
    assert cosine([1.0, 0.0], [1.0, 0.0, 0.0]) is None
