"""Utilities for loading and managing parameter bounds configurations."""

from pathlib import Path

import numpy as np
import yaml

from .box import BoundSpec, check_bounds

ALLOWED_KEYS = ("lower", "upper", "scale")


def load_bounds(filepath: str | Path | None = None) -> dict[str, BoundSpec]:
    """Load parameter bounds from a YAML file.

    Parameters
    ----------
    filepath : str, Path, or None
        Path to a custom bounds YAML file. If None, loads the default
        configuration from default_bounds.yaml.

    Returns
    -------
    dict
        Mapping of parameter id to BoundSpec.

    Raises
    ------
    FileNotFoundError
        If the specified filepath does not exist.
    ValueError
        If an entry is missing ``lower``, has unknown keys or invalid values.
    """
    if filepath is None:
        filepath = Path(__file__).parent / "default_bounds.yaml"
    else:
        filepath = Path(filepath)

    if not filepath.exists():
        raise FileNotFoundError(f"Bounds file not found: {filepath}")

    with open(filepath) as f:
        config = yaml.safe_load(f)

    if not isinstance(config, dict) or not config:
        raise ValueError(f"Bounds file {filepath} must map parameter ids to bounds")

    bounds = bounds_from_config(config)
    validate_bounds(bounds)
    return bounds


def bounds_from_config(config: dict) -> dict[str, BoundSpec]:
    """Convert a bounds configuration loaded from YAML to BoundSpecs.

    Parameters
    ----------
    config : dict
        Mapping of parameter id to a dict with ``lower`` and optional
        ``upper`` and ``scale`` entries (scalars or lists).

    Returns
    -------
    dict
        Mapping of parameter id to BoundSpec.
    """
    bounds = {}
    for param_id, entry in config.items():
        if not isinstance(entry, dict):
            raise ValueError(f"Bounds for {param_id!r} must be a mapping, got {entry!r}")

        unknown = [key for key in entry if key not in ALLOWED_KEYS]
        if unknown:
            raise ValueError(
                f"Bounds for {param_id!r} have unknown keys {unknown}. Allowed keys: {list(ALLOWED_KEYS)}"
            )
        if "lower" not in entry:
            raise ValueError(f"Bounds for {param_id!r} missing required key: lower")

        upper = entry.get("upper")
        bounds[param_id] = BoundSpec(
            lower=np.asarray(entry["lower"], dtype=float),
            upper=None if upper is None else np.asarray(upper, dtype=float),
            scale=np.asarray(entry.get("scale", 1.0), dtype=float),
        )
    return bounds


def validate_bounds(bounds: dict[str, BoundSpec]) -> None:
    """Validate that every BoundSpec is well formed.

    Parameters
    ----------
    bounds : dict
        Mapping of parameter id to BoundSpec.

    Raises
    ------
    ValueError
        If validation fails (ShapeError and ValidationError are ValueErrors).
    """
    for param_id, spec in bounds.items():
        shapes = {np.shape(bound) for bound in spec if bound is not None and np.ndim(bound) > 0}
        if len(shapes) > 1:
            raise ValueError(f"Bounds for {param_id!r} have inconsistent shapes {sorted(shapes)}")
        shape = shapes.pop() if shapes else ()
        try:
            check_bounds(spec, shape)
        except ValueError as e:
            raise ValueError(f"Invalid bounds for {param_id!r}: {e}") from e


def dump_default_bounds(output_path: str | Path) -> None:
    """Dump the default bounds configuration to a YAML file.

    This creates a template file that users can customize for their needs.

    Parameters
    ----------
    output_path : str or Path
        Path where the default bounds YAML will be saved.
    """
    output_path = Path(output_path)
    default_path = Path(__file__).parent / "default_bounds.yaml"

    if not default_path.exists():
        raise FileNotFoundError(
            f"Default bounds file not found at {default_path}. "
            "This should not happen - please check the package installation."
        )

    with open(default_path) as f:
        default_config = f.read()

    with open(output_path, "w") as f:
        f.write(default_config)

    print(f"Default bounds configuration saved to: {output_path}")
    print("You can now edit this file to customize the parameter bounds.")
