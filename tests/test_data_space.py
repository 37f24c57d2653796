import random

import numpy as np
import pytest

from minicnn import DataSpace, Format, FormatMismatchError, IndexingError, Tensor
from minicnn.layer import SequencingError


def make_space(count: int = 5, rng: random.Random = None) -> DataSpace:
    data = [Tensor.make(np.arange(4.0) + 10 * i, (2, 2, 1)) for i in range(count)]
    labels = [Tensor.make([float(i), -float(i)], (1, 2, 1)) for i in range(count)]
    return DataSpace((2, 2, 1), data, (1, 2, 1), labels, rng or random.Random(3))


def test_two_item_space(two_item_space):
    assert two_item_space.get_item_count() == 2
    assert len(two_item_space) == 2
    assert two_item_space.get_data_format() == Format(2, 2, 3)
    assert two_item_space.get_label_format() == Format(1, 1, 1)
    assert two_item_space.has_labels()

    first = two_item_space.get_next_data()
    np.testing.assert_array_equal(first.flat(), np.full(12, 1.0))
    assert two_item_space.get_next_label().get_at_flat(0) == 0.0

    assert two_item_space.iterator_has_next()
    two_item_space.iterator_next()
    assert not two_item_space.iterator_has_next()
    np.testing.assert_array_equal(two_item_space.get_next_data().flat(), np.full(12, 2.0))
    assert two_item_space.get_next_label().get_at_flat(0) == 1.0

    two_item_space.iterator_next()
    with pytest.raises(IndexingError):
        two_item_space.iterator_next()
    two_item_space.iterator_reset()
    assert two_item_space.iterator_idx == 0


def test_observed_rows_match_source_before_and_after_shuffle():
    space = make_space()
    data = Tensor(2, 2, 1)
    label = Tensor(1, 2, 1)
    for shuffled in (False, True):
        if shuffled:
            space.shuffle()
        for idx in range(space.get_item_count()):
            row = space.shuffle_table[idx]
            space.observe_data_at_idx(data, idx)
            space.observe_label_at_idx(label, idx)
            np.testing.assert_array_equal(data.flat(), np.arange(4.0) + 10 * row)
            np.testing.assert_array_equal(label.flat(), [row, -row])


def test_shuffle_permutes_positions_only():
    space = make_space(20)
    rows_before = space.data_table.flat().copy()
    space.shuffle(random.Random(11))
    assert sorted(space.shuffle_table) == list(range(20))
    assert space.shuffle_table != list(range(20))
    np.testing.assert_array_equal(space.data_table.flat(), rows_before)


def test_observation_is_zero_copy():
    space = make_space()
    view = Tensor(2, 2, 1)
    space.observe_data_at_idx(view, 1)
    row = space.shuffle_table[1]
    space.set_data(Tensor.make([7.0, 7.0, 7.0, 7.0], (2, 2, 1)), 1)
    np.testing.assert_array_equal(view.flat(), np.full(4, 7.0))
    assert space.shuffle_table[1] == row


def test_observer_format_is_checked():
    space = make_space()
    with pytest.raises(FormatMismatchError):
        space.observe_data_at_idx(Tensor(4, 1, 1), 0)
    with pytest.raises(FormatMismatchError):
        space.observe_label_at_idx(Tensor(2, 1, 1), 0)
    with pytest.raises(IndexingError):
        space.observe_data_at_idx(Tensor(2, 2, 1), 5)


def test_construction_errors():
    data = [Tensor(2, 2, 1), Tensor(2, 2, 1)]
    with pytest.raises(ValueError):
        DataSpace((2, 2, 1), data, (1, 1, 1), [Tensor(1, 1, 1)])
    with pytest.raises(FormatMismatchError):
        DataSpace((2, 2, 1), [Tensor(2, 2, 1), Tensor(1, 2, 2)])
    with pytest.raises(FormatMismatchError):
        DataSpace((2, 2, 1), data, (1, 1, 1), [Tensor(1, 1, 1), Tensor(1, 1, 2)])


def test_unlabelled_space():
    space = DataSpace((1, 3, 1), [Tensor.make([1.0, 2.0, 3.0], (1, 3, 1))])
    assert not space.has_labels()
    assert space.label_item_count() == 0
    with pytest.raises(SequencingError):
        space.observe_label_at_idx(Tensor(1, 1, 1), 0)
    with pytest.raises(SequencingError):
        space.get_next_label()
    [(data, label)] = list(space)
    assert label is None
    np.testing.assert_array_equal(data.flat(), [1.0, 2.0, 3.0])


def test_empty_space_filled_later():
    space = DataSpace.empty(3, (1, 2, 1), (1, 1, 1))
    assert space.get_item_count() == 3
    space.set_data(Tensor.make([4.0, 5.0], (1, 2, 1)), 2)
    space.set_label(Tensor.make([1.0], (1, 1, 1)), 2)
    data, label = list(space)[2]
    np.testing.assert_array_equal(data.flat(), [4.0, 5.0])
    assert label.get_at_flat(0) == 1.0
    np.testing.assert_array_equal(space.data_table.flat()[:3], [0.0, 0.0, 0.0])


def test_iteration_yields_every_item(two_item_space):
    pairs = list(two_item_space)
    assert len(pairs) == 2
    assert [label.get_at_flat(0) for _, label in pairs] == [0.0, 1.0]
