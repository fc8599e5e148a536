"""Tests for zinbwave.model."""
