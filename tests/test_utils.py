"""Unit tests for the vector primitives."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from nlpsolve_jax.utils import (
    IncompatibleLengthsError,
    add,
    inner_product,
    norm2,
    norm2_sqr,
    scaled,
)

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


class TestVectorPrimitives:
    """Tests for inner products, norms, scaling and addition."""

    def test_inner_product(self):
        assert float(inner_product([1.0, 2.0, 3.0], [4.0, -5.0, 6.0])) == 12.0

    def test_norms(self):
        v = jnp.array([3.0, 4.0])
        assert float(norm2_sqr(v)) == 25.0
        assert float(norm2(v)) == 5.0

    def test_scaled(self):
        np.testing.assert_allclose(scaled([1.0, -2.0], 0.5), [0.5, -1.0])

    def test_add(self):
        np.testing.assert_allclose(add([1.0, 2.0], [1.0, 2.0]), [2.0, 4.0])

    def test_empty_vectors(self):
        assert float(inner_product(jnp.zeros(0), jnp.zeros(0))) == 0.0
        assert float(norm2_sqr(jnp.zeros(0))) == 0.0


class TestIncompatibleLengths:
    """Pairwise operations on vectors of different lengths must fail."""

    def test_add_raises(self):
        with pytest.raises(IncompatibleLengthsError):
            add([1.0, 2.0], [1.0, 2.0, 3.0])

    def test_inner_product_raises(self):
        with pytest.raises(IncompatibleLengthsError):
            inner_product(jnp.ones(2), jnp.ones(3))

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            add(jnp.ones(4), jnp.ones(1))

    def test_raises_under_jit(self):
        with pytest.raises(IncompatibleLengthsError):
            jax.jit(add)(jnp.ones(2), jnp.ones(3))
