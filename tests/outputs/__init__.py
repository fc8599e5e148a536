"""Tests for zinbwave.outputs."""
