"""Tests for zinbwave.fit."""
