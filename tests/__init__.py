"""Tests for device-session."""
