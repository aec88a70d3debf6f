"""Exception types raised by the transform, SensitiveFloat and line search code."""


class BoundsError(ValueError):
    """A constrained value lies outside (or on) its declared bounds."""


class ShapeError(ValueError):
    """Mismatched lengths between values and bounds, or between SensitiveFloats."""


class ValidationError(ValueError):
    """Bounds specification is malformed, e.g. mixed finite and infinite upper bounds."""


class LineSearchError(ArithmeticError):
    """Base class for failures of the interpolating line search."""


class InterpolationError(LineSearchError):
    """Cubic interpolation has no real solution for the given bracket."""


class DescentDirectionError(LineSearchError):
    """The search direction does not decrease the objective at the starting point."""
