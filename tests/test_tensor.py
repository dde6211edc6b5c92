"""
Tests for Tensor
================

Construction, indexing, arithmetic and structural operations of the
multi-channel Tensor container.
"""

import logging

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from backprop.tensor import Tensor, as_matrix, as_tensor


class TestConstruction:
    """Tests for the Tensor constructors."""

    def test_empty(self):
        t = Tensor()
        assert t.depth == 0
        assert t.shape == (0, 0, 0)
        assert len(t) == 0

    def test_zeros(self):
        t = Tensor.zeros(2, 3, 4)
        assert t.shape == (2, 3, 4)
        assert np.all(t.numpy() == 0)

    def test_from_shape_tuple(self):
        assert Tensor((3, 2, 2)).shape == (3, 2, 2)

    def test_from_matrix(self):
        m = np.arange(6.0).reshape(2, 3)
        t = Tensor(m)
        assert t.shape == (1, 2, 3)
        assert t.is_single_matrix()
        np.testing.assert_array_equal(t.get_single_matrix(), m)

    def test_from_matrices(self):
        t = Tensor([np.ones((2, 2)), np.zeros((2, 2))])
        assert t.shape == (2, 2, 2)
        np.testing.assert_array_equal(t[0], np.ones((2, 2)))

    def test_mismatched_matrices(self):
        with pytest.raises(ValueError):
            Tensor([np.ones((2, 2)), np.ones((3, 2))])

    def test_copies_input(self):
        m = np.ones((2, 2))
        t = Tensor(m)
        m[0, 0] = 5.0
        assert t[0, 0, 0] == 1.0

    def test_copy_constructor(self):
        a = Tensor(np.ones((1, 2, 2)))
        b = Tensor(a)
        b[0] *= 2
        assert a[0, 0, 0] == 1.0
        assert b[0, 0, 0] == 2.0

    def test_rejects_1d_array(self):
        with pytest.raises(ValueError):
            Tensor(np.ones(4))


class TestIndexing:
    """Tests for channel and element access."""

    def test_channel_view_is_writable(self):
        t = Tensor.zeros(2, 2, 2)
        t[1] += 3.0
        assert t[1, 0, 0] == 3.0
        assert t[0, 0, 0] == 0.0

    def test_set_channel(self):
        t = Tensor.zeros(2, 2, 2)
        t[0] = np.full((2, 2), 7.0)
        assert np.all(t[0] == 7.0)

    def test_set_channel_wrong_shape(self):
        t = Tensor.zeros(2, 2, 2)
        with pytest.raises(ValueError):
            t[0] = np.ones((3, 3))

    def test_element_access(self):
        t = Tensor.zeros(2, 3, 3)
        t[1, 2, 0] = 4.0
        assert t[1, 2, 0] == 4.0

    def test_out_of_range(self):
        t = Tensor.zeros(2, 2, 2)
        with pytest.raises(IndexError):
            t[2]
        with pytest.raises(IndexError):
            t[-1]
        with pytest.raises(IndexError):
            t[5, 0, 0]

    def test_iteration(self):
        t = Tensor([np.ones((2, 2)), 2 * np.ones((2, 2))])
        sums = [channel.sum() for channel in t]
        assert sums == [4.0, 8.0]


class TestArithmetic:
    """Tests for scalar and tensor arithmetic."""

    def test_scalar_ops(self):
        t = Tensor(np.ones((2, 2)))
        assert np.all((t * 3).numpy() == 3)
        assert np.all((3 * t).numpy() == 3)
        assert np.all((t - 1).numpy() == 0)
        assert np.all((t / 4).numpy() == 0.25)

    def test_in_place_ops(self):
        t = Tensor(np.ones((2, 2)))
        t *= 4
        t -= 1
        t /= 3
        np.testing.assert_allclose(t.numpy(), 1.0)

    def test_divide_by_zero(self):
        t = Tensor(np.ones((2, 2)))
        with pytest.raises(ValueError):
            t / 0
        with pytest.raises(ValueError):
            t /= 0

    def test_add(self):
        a = Tensor(np.ones((2, 2)))
        b = Tensor(2 * np.ones((2, 2)))
        assert np.all((a + b).numpy() == 3)
        a += b
        assert np.all(a.numpy() == 3)

    def test_add_depth_mismatch(self):
        a = Tensor.zeros(1, 2, 2)
        b = Tensor.zeros(2, 2, 2)
        with pytest.raises(ValueError):
            a + b

    def test_equality(self):
        assert Tensor(np.ones((2, 2))) == Tensor(np.ones((2, 2)))
        assert Tensor(np.ones((2, 2))) != Tensor(np.zeros((2, 2)))


class TestStructure:
    """Tests for flatten, slice, push/pop and resize."""

    def test_flatten_stacks_rows(self):
        t = Tensor([np.ones((2, 3)), 2 * np.ones((2, 3))])
        flat = t.flatten()
        assert flat.shape == (4, 3)
        assert np.all(flat[:2] == 1) and np.all(flat[2:] == 2)

    def test_flatten_empty(self):
        assert Tensor().flatten().shape == (0, 0)

    def test_slice(self):
        t = Tensor([np.ones((2, 2)), 2 * np.ones((2, 2))])
        s = t.slice(1)
        assert s.shape == (1, 2, 2)
        s[0] *= 0
        assert t[1, 0, 0] == 2.0

    def test_slice_out_of_range_logs_and_raises(self, caplog):
        t = Tensor.zeros(2, 2, 2)
        with caplog.at_level(logging.ERROR, logger='backprop'):
            with pytest.raises(IndexError):
                t.slice(2)
        assert any('out of range' in record.getMessage() for record in caplog.records)

    def test_push_and_pop(self):
        t = Tensor()
        t.push_back(np.ones((2, 2)))
        t.push_back(np.zeros((2, 2)))
        assert t.depth == 2
        last = t.pop_back()
        assert np.all(last == 0)
        assert t.depth == 1

    def test_push_wrong_shape(self):
        t = Tensor(np.ones((2, 2)))
        with pytest.raises(ValueError):
            t.push_back(np.ones((3, 3)))

    def test_pop_empty(self):
        with pytest.raises(RuntimeError):
            Tensor().pop_back()

    def test_resize(self):
        t = Tensor(np.ones((2, 2)))
        t.resize(2, 3, 3)
        assert t.shape == (2, 3, 3)
        assert t[0, 1, 1] == 1.0
        assert t[0, 2, 2] == 0.0
        assert np.all(t[1] == 0)

    def test_get_single_matrix_requires_depth_one(self):
        with pytest.raises(RuntimeError):
            Tensor.zeros(2, 2, 2).get_single_matrix()

    def test_set_random(self):
        np.random.seed(0)
        t = Tensor.zeros(2, 5, 5)
        t.set_random()
        values = t.numpy()
        assert np.all(values >= -1) and np.all(values <= 1)
        assert np.any(values != 0)


class TestConversions:
    """Tests for the array helpers."""

    def test_as_tensor_passthrough(self):
        t = Tensor(np.ones((2, 2)))
        assert as_tensor(t) is t

    def test_as_matrix_from_vector(self):
        assert as_matrix(np.arange(3.0)).shape == (1, 3)

    def test_as_matrix_from_tensor(self):
        m = as_matrix(Tensor(np.ones((2, 4))))
        assert m.shape == (2, 4)
