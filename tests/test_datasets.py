import random

import pytest

import minicnn
from minicnn import Format
from minicnn.datasets import make_pts


def test_make_pts_in_unit_square():
    pts = make_pts(50, random.Random(0))
    assert len(pts) == 50
    assert all(0.0 <= x_1 <= 1.0 and 0.0 <= x_2 <= 1.0 for x_1, x_2 in pts)


@pytest.mark.parametrize("name", sorted(minicnn.datasets))
def test_datasets_are_labelled_points(name):
    space = minicnn.datasets[name](20, random.Random(1))
    assert space.get_item_count() == 20
    assert space.get_data_format() == Format(1, 2, 1)
    assert space.get_label_format() == Format(1, 1, 1)
    for _, label in space:
        assert label.get_at_flat(0) in (0.0, 1.0)


def test_simple_labels_follow_the_rule():
    space = minicnn.datasets["Simple"](30, random.Random(2))
    for data, label in space:
        expected = 1.0 if data.get_at_flat(0) < 0.5 else 0.0
        assert label.get_at_flat(0) == expected


def test_spiral_splits_classes_evenly():
    space = minicnn.datasets["Spiral"](10)
    labels = [label.get_at_flat(0) for _, label in space]
    assert labels == [0.0] * 5 + [1.0] * 5
