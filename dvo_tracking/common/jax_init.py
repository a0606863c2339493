"""
Common JAX Initialization Module.

This module initializes JAX once at import time.
All other modules should import JAX from here instead of importing jax directly
so x64 precision is enabled before any kernel is traced.

Usage:
    from dvo_tracking.common.jax_init import jax, jnp

The default platform is CPU; set JAX_PLATFORMS (e.g. "cuda") before the first
import to run the kernels elsewhere.
"""

from __future__ import annotations

import os

# Configure JAX environment variables BEFORE importing JAX.
os.environ.setdefault("JAX_PLATFORMS", "cpu")
os.environ.setdefault("XLA_PYTHON_CLIENT_PREALLOCATE", "false")

import jax
import jax.numpy as jnp

# Poses and normal equations are accumulated in double precision.
jax.config.update("jax_enable_x64", True)

__all__ = ["jax", "jnp"]
