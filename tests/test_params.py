import jax
import jax.numpy as jnp
import numpy as np
import pytest
from celeste_opt.errors import BoundsError, ShapeError, ValidationError
from celeste_opt.layout import ParamLayout
from celeste_opt.sensitive_float import sensitive_float_from_fn, zero_sensitive_float
from celeste_opt.transform import BoundSpec, ParameterTransform

S = 2
LAYOUT = ParamLayout("canonical", {"u": 2, "e_dev": 1, "r1": 2, "k": 2})
BOUNDS = {
    "e_dev": BoundSpec(0.01, 0.99),
    "r1": BoundSpec([1e-4, 1e-3], None, 0.5),
    "k": BoundSpec(1e-4, 0.9999, [1.0, 2.0]),
}


def make_vp():
    return {
        "u": jnp.array([[10.5, 3.2], [-4.0, 7.25]]),
        "e_dev": jnp.array([[0.3], [0.8]]),
        "r1": jnp.array([[1.5, 0.2], [4.0, 0.01]]),
        "k": jnp.array([[0.25, 0.75], [0.6, 0.4]]),
    }


def vp_to_flat(vp):
    return jnp.concatenate([vp[param_id] for param_id in LAYOUT.ids], axis=1).reshape(-1)


def assert_vp_close(vp1, vp2, atol=1e-6):
    assert set(vp1) == set(vp2)
    for param_id in vp1:
        np.testing.assert_allclose(vp1[param_id], vp2[param_id], atol=atol)


@pytest.fixture
def transform():
    return ParameterTransform(LAYOUT, BOUNDS, num_sources=S)


class TestConversion:
    def test_constrain_and_unconstrain_undo_each_other(self, transform):
        vp = make_vp()
        vp_free = transform.from_vp(vp)
        assert_vp_close(transform.to_vp(vp_free), vp)

    def test_unbounded_ids_pass_through(self, transform):
        vp = make_vp()
        vp_free = transform.from_vp(vp)
        assert np.array_equal(vp_free["u"], vp["u"])
        assert not np.allclose(vp_free["e_dev"], vp["e_dev"])

    def test_out_of_bounds(self, transform):
        vp = make_vp()
        vp["e_dev"] = jnp.array([[0.3], [1.0]])
        with pytest.raises(BoundsError):
            transform.from_vp(vp)

    def test_wrong_shape(self, transform):
        vp = make_vp()
        vp["k"] = jnp.array([0.25, 0.75])
        with pytest.raises(ShapeError):
            transform.from_vp(vp)

    def test_missing_id(self, transform):
        vp = make_vp()
        del vp["u"]
        with pytest.raises(ShapeError):
            transform.to_vp(vp)


class TestVector:
    def test_round_trip(self, transform):
        vp = make_vp()
        x = transform.vp_to_vector(vp)
        assert x.shape == (LAYOUT.size * S,)
        assert x.shape == (transform.free_size(),)
        assert_vp_close(transform.vector_to_vp(x, vp), vp)

    def test_source_major_order(self, transform):
        vp = make_vp()
        x = transform.vp_to_vector(vp)
        vp_free = transform.from_vp(vp)
        np.testing.assert_allclose(x[: LAYOUT.size], vp_to_flat(vp_free)[: LAYOUT.size])
        np.testing.assert_allclose(x[LAYOUT.size : LAYOUT.size + 2], vp["u"][1])

    def test_omitted_ids(self, transform):
        vp = make_vp()
        omitted_ids = ["u", "k"]
        x = transform.vp_to_vector(vp, omitted_ids)
        assert x.shape == (transform.free_size(omitted_ids),) == (6,)

        other = {param_id: value for param_id, value in make_vp().items()}
        other["e_dev"] = jnp.array([[0.5], [0.5]])
        other["r1"] = jnp.array([[1.0, 1.0], [1.0, 1.0]])
        vp2 = transform.vector_to_vp(x, other, omitted_ids)
        assert_vp_close(vp2, vp)
        # The input parameter set is not modified.
        np.testing.assert_allclose(other["e_dev"], jnp.array([[0.5], [0.5]]))

    def test_wrong_vector_length(self, transform):
        with pytest.raises(ShapeError):
            transform.vector_to_vp(jnp.zeros(3), make_vp())

    def test_unknown_omitted_id(self, transform):
        with pytest.raises(ValidationError):
            transform.vp_to_vector(make_vp(), ["not_an_id"])


class TestConstruction:
    def test_unknown_bound_id(self):
        with pytest.raises(ValidationError):
            ParameterTransform(LAYOUT, {"a": BoundSpec(0.0, 1.0)}, num_sources=S)

    def test_elementwise_bound_length(self):
        with pytest.raises(ShapeError):
            ParameterTransform(LAYOUT, {"r1": BoundSpec([0.0, 0.0, 0.0])}, num_sources=S)

    def test_mixed_bounds(self):
        with pytest.raises(ValidationError):
            ParameterTransform(LAYOUT, {"r1": BoundSpec([0.0, 0.0], [1.0, jnp.inf])}, num_sources=S)

    def test_free_layout_is_distinct(self, transform):
        assert transform.free_layout != transform.layout
        assert transform.free_layout.ids == transform.layout.ids


class TestSensitiveFloat:
    def test_chain_rule(self, transform):
        vp = make_vp()
        weights = jnp.arange(1.0, LAYOUT.size * S + 1.0) / 10.0

        def fn(theta):
            return -jnp.sum(weights * (theta - 0.5) ** 2) + theta[2] * theta[9] + jnp.sin(theta[4])

        sf = sensitive_float_from_fn(fn, vp_to_flat(vp), LAYOUT, S)
        sf_free = transform.transform_sensitive_float(sf, vp)

        def fn_free(x):
            return fn(vp_to_flat(transform.vector_to_vp(x, vp)))

        x = transform.vp_to_vector(vp)
        assert sf_free.layout == transform.free_layout
        assert sf_free.v == pytest.approx(float(fn_free(x)))
        np.testing.assert_allclose(sf_free.d, jax.grad(fn_free)(x), rtol=1e-8, atol=1e-12)
        np.testing.assert_allclose(sf_free.h, jax.hessian(fn_free)(x), rtol=1e-8, atol=1e-10)

    def test_rejects_other_layouts(self, transform):
        vp = make_vp()
        with pytest.raises(ShapeError):
            transform.transform_sensitive_float(zero_sensitive_float(transform.free_layout, num_sources=S), vp)
        with pytest.raises(ShapeError):
            transform.transform_sensitive_float(zero_sensitive_float(LAYOUT, num_sources=S + 1), vp)
