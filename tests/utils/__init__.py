"""Tests for zinbwave.utils."""
