"""Connector resolver test suite."""
