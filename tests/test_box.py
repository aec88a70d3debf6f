import jax
import jax.numpy as jnp
import numpy as np
import pytest
from celeste_opt.errors import BoundsError, ShapeError, ValidationError
from celeste_opt.transform import box, box_derivative, unbox, unbox_derivative

SCALES = [1.0, 2.0]
VECTOR_SCALES = [1.0, 2.0, [2.0, 3.0]]


def box_and_unbox(param, lower, upper, scale=1.0):
    free = unbox(param, lower, upper, scale)
    new_param = box(free, lower, upper, scale)
    np.testing.assert_allclose(new_param, param, atol=1e-6)


class TestRoundTrip:
    @pytest.mark.parametrize("scale", SCALES)
    def test_scalar_bounded(self, scale):
        box_and_unbox(1.0, -1.0, 2.0, scale)

    @pytest.mark.parametrize("scale", SCALES)
    def test_scalar_bounded_below(self, scale):
        box_and_unbox(1.0, -1.0, jnp.inf, scale)
        box_and_unbox(1.0, -1.0, None, scale)

    @pytest.mark.parametrize("scale", SCALES)
    def test_close_to_the_bounds(self, scale):
        box_and_unbox(-1.0 + 1e-9, -1.0, 2.0, scale)
        box_and_unbox(2.0 - 1e-9, -1.0, 2.0, scale)
        box_and_unbox(-1.0 + 1e-12, -1.0, None, scale)

    @pytest.mark.parametrize("scale", VECTOR_SCALES)
    def test_vector_with_shared_bounds(self, scale):
        box_and_unbox(jnp.array([1.0, 1.5]), -1.0, 2.0, scale)
        box_and_unbox(jnp.array([1.0, 1.5]), -1.0, jnp.inf, scale)

    @pytest.mark.parametrize("scale", VECTOR_SCALES)
    def test_vector_with_elementwise_bounds(self, scale):
        box_and_unbox(jnp.array([1.0, 10.0]), [-1.0, 9.0], [2.0, 12.0], scale)
        box_and_unbox(jnp.array([1.0, 10.0]), [-1.0, 9.0], [jnp.inf, jnp.inf], scale)
        box_and_unbox(jnp.array([1.0, 10.0]), [-1.0, 9.0], None, scale)

    def test_box_is_total(self):
        free = jnp.array([-800.0, -5.0, 0.0, 5.0, 800.0])
        param = box(free, -1.0, 2.0)
        assert jnp.all(param >= -1.0)
        assert jnp.all(param <= 2.0)
        assert jnp.all(jnp.isfinite(param))

    def test_zero_maps_to_midpoint(self):
        assert box(0.0, -1.0, 3.0) == pytest.approx(1.0)
        assert unbox(1.0, -1.0, 3.0) == pytest.approx(0.0)


class TestScaleLaw:
    @pytest.mark.parametrize("c", [0.5, 1.0, 3.0])
    @pytest.mark.parametrize("upper", [2.0, None])
    def test_unbox_divides_by_scale(self, c, upper):
        np.testing.assert_allclose(
            unbox(1.0, -1.0, upper, 2.0 * c), unbox(1.0, -1.0, upper, c) / 2.0, atol=1e-12
        )

    @pytest.mark.parametrize("c", [0.5, 1.0, 3.0])
    @pytest.mark.parametrize("upper", [2.0, None])
    def test_unbox_derivative_divides_by_scale(self, c, upper):
        np.testing.assert_allclose(
            unbox_derivative(1.0, 2.0, -1.0, upper, 2.0 * c),
            unbox_derivative(1.0, 2.0, -1.0, upper, c) / 2.0,
            atol=1e-12,
        )

    def test_matches_unit_scale(self):
        np.testing.assert_allclose(
            unbox_derivative(1.0, 2.0, -1.0, 2.0, 2.0),
            unbox_derivative(1.0, 2.0, -1.0, 2.0, 1.0) * 0.5,
            atol=1e-6,
        )


class TestBoundsChecks:
    def test_scalar_below_lower(self):
        with pytest.raises(BoundsError, match="lower"):
            unbox(1.0, 2.0, 3.0)

    def test_scalar_above_upper(self):
        with pytest.raises(BoundsError, match="upper"):
            unbox(4.0, 2.0, 3.0)

    def test_closed_boundary_fails(self):
        with pytest.raises(BoundsError):
            unbox(-1.0, -1.0, 2.0)
        with pytest.raises(BoundsError):
            unbox(2.0, -1.0, 2.0)
        with pytest.raises(BoundsError):
            unbox(-1.0, -1.0, None)

    def test_vector_with_shared_bounds(self):
        with pytest.raises(BoundsError):
            unbox(jnp.array([1.0, 1.5]), 2.0, 3.0)

    def test_vector_with_elementwise_bounds(self):
        with pytest.raises(BoundsError):
            unbox(jnp.array([1.0, 10.0]), [2.0, 3.0], [9.0, 12.0])

    def test_unbox_derivative_checks_bounds(self):
        with pytest.raises(BoundsError):
            unbox_derivative(3.0, 1.0, -1.0, 2.0)

    def test_check_can_be_disabled(self):
        assert jnp.isnan(unbox(3.0, -1.0, 2.0, check=False))

    def test_bounds_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            unbox(1.0, 2.0, 3.0)


class TestShapes:
    def test_mismatched_lower(self):
        with pytest.raises(ShapeError):
            unbox(jnp.array([1.0, 10.0, 11.0]), [-1.0, 9.0], [2.0, 12.0])

    def test_mismatched_scale(self):
        with pytest.raises(ShapeError):
            box(jnp.array([1.0, 10.0]), -1.0, 2.0, [1.0, 2.0, 3.0])

    def test_vector_bounds_for_scalar(self):
        with pytest.raises(ShapeError):
            unbox(1.0, [-1.0, 0.0], [2.0, 3.0])

    def test_mismatched_derivative(self):
        with pytest.raises(ShapeError):
            unbox_derivative(jnp.array([1.0, 10.0]), jnp.array([1.0]), [-1.0, 9.0], [2.0, 12.0])


class TestValidation:
    def test_mixed_upper_bounds(self):
        with pytest.raises(ValidationError):
            unbox(jnp.array([1.0, 10.0]), [-1.0, 9.0], [2.0, jnp.inf])
        with pytest.raises(ValidationError):
            box(jnp.array([1.0, 10.0]), [-1.0, 9.0], [2.0, jnp.inf])
        with pytest.raises(ValidationError):
            unbox_derivative(
                jnp.array([1.0, 10.0]), jnp.array([2.0, 3.0]), [-1.0, 9.0], [2.0, jnp.inf]
            )
        with pytest.raises(ValidationError):
            box_derivative(jnp.array([1.0, 10.0]), jnp.array([2.0, 3.0]), [-1.0, 9.0], [2.0, jnp.inf])

    def test_non_positive_scale(self):
        with pytest.raises(ValidationError):
            box(0.0, -1.0, 2.0, 0.0)
        with pytest.raises(ValidationError):
            unbox(1.0, -1.0, 2.0, -1.0)

    def test_upper_not_above_lower(self):
        with pytest.raises(ValidationError):
            box(0.0, 2.0, 2.0)

    def test_infinite_lower(self):
        with pytest.raises(ValidationError):
            box(0.0, -jnp.inf, 2.0)


class TestDualNumbers:
    @pytest.mark.parametrize("scale", SCALES)
    def test_scalar_round_trip(self, scale):
        def round_trip(p):
            return box(unbox(p, -1.0, 2.0, scale), -1.0, 2.0, scale)

        value, tangent = jax.jvp(round_trip, (jnp.asarray(1.0),), (jnp.asarray(1.0),))
        assert value == pytest.approx(1.0, abs=1e-6)
        assert tangent == pytest.approx(1.0, abs=1e-6)

    @pytest.mark.parametrize("scale", VECTOR_SCALES)
    def test_vector_round_trip(self, scale):
        param = jnp.array([1.0, 10.0])

        def round_trip(p):
            return box(unbox(p, [-1.0, 9.0], [2.0, 12.0], scale), [-1.0, 9.0], [2.0, 12.0], scale)

        value, tangent = jax.jvp(round_trip, (param,), (jnp.ones(2),))
        np.testing.assert_allclose(value, param, atol=1e-6)
        np.testing.assert_allclose(tangent, jnp.ones(2), atol=1e-6)

    @pytest.mark.parametrize("upper", [2.0, None])
    @pytest.mark.parametrize("scale", SCALES)
    def test_unbox_tangent_matches_unbox_derivative(self, upper, scale):
        param = jnp.array([0.5, 1.0, 1.5])
        param_derivative = jnp.array([2.0, -1.0, 0.25])
        _, tangent = jax.jvp(lambda p: unbox(p, -1.0, upper, scale), (param,), (param_derivative,))
        np.testing.assert_allclose(
            tangent, unbox_derivative(param, param_derivative, -1.0, upper, scale), rtol=1e-10
        )

    @pytest.mark.parametrize("upper", [2.0, None])
    @pytest.mark.parametrize("scale", SCALES)
    def test_box_tangent_matches_box_derivative(self, upper, scale):
        free = jnp.array([-2.0, 0.0, 0.7])
        free_derivative = jnp.array([1.0, 3.0, -0.5])
        _, tangent = jax.jvp(lambda f: box(f, -1.0, upper, scale), (free,), (free_derivative,))
        np.testing.assert_allclose(
            tangent, box_derivative(free, free_derivative, -1.0, upper, scale), rtol=1e-10
        )

    def test_derivatives_are_reciprocal(self):
        param = jnp.array([1.0, 10.0])
        free = unbox(param, [-1.0, 9.0], [2.0, 12.0], 2.0)
        ones = jnp.ones(2)
        product = unbox_derivative(param, ones, [-1.0, 9.0], [2.0, 12.0], 2.0) * box_derivative(
            free, ones, [-1.0, 9.0], [2.0, 12.0], 2.0
        )
        np.testing.assert_allclose(product, ones, rtol=1e-10)

    def test_derivative_of_dual_inputs(self):
        # unbox_derivative itself stays differentiable.
        def first(p):
            return unbox_derivative(p, jnp.asarray(1.0), -1.0, 2.0)

        _, second = jax.jvp(first, (jnp.asarray(1.0),), (jnp.asarray(1.0),))
        # d/dp [3 / ((p + 1)(2 - p))] at p = 1
        expected = -3.0 * ((2.0 - 1.0) - (1.0 + 1.0)) / ((1.0 + 1.0) * (2.0 - 1.0)) ** 2
        assert second == pytest.approx(expected)


@pytest.fixture
def single_precision():
    jax.config.update("jax_enable_x64", False)
    yield
    jax.config.update("jax_enable_x64", True)


class TestSinglePrecision:
    def test_just_inside_lower_bound(self, single_precision):
        free = unbox(-1.0 + 1e-9, -1.0, 2.0)
        assert free.dtype == jnp.float32
        assert jnp.isfinite(free)
        assert free < -20.0

    def test_just_inside_upper_bound(self, single_precision):
        free = unbox(2.0 - 1e-9, -1.0, 2.0)
        assert jnp.isfinite(free)
        assert free > 20.0

    def test_just_inside_lower_bound_only(self, single_precision):
        free = unbox(np.array([1.0 + 1e-9, 3.0]), 1.0)
        assert jnp.all(jnp.isfinite(free))
        assert free[0] < -20.0

    def test_derivative_just_inside(self, single_precision):
        derivative = unbox_derivative(-1.0 + 1e-9, 1.0, -1.0, 2.0)
        assert jnp.isfinite(derivative)
        assert derivative > 1e8

    def test_on_the_bound_still_fails(self, single_precision):
        with pytest.raises(BoundsError):
            unbox(-1.0, -1.0, 2.0)
        with pytest.raises(BoundsError):
            unbox_derivative(2.0, 1.0, -1.0, 2.0)
