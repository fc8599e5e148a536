"""Tests for zinbwave.core: likelihood, numba kernels, structures and exceptions."""
