"""Dagger CI pipeline for the Hello World API."""

from .main import HelloApiCi as HelloApiCi
