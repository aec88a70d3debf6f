import jax

# Exact comparisons below are made in double precision.
jax.config.update("jax_enable_x64", True)
