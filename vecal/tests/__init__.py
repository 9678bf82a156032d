"""Unit tests for vecal."""
