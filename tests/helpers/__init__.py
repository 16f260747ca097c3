"""Shared test helpers."""

from tests.helpers.fakes import FakeConnection

__all__ = ["FakeConnection"]
