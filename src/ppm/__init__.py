"""Polyglot package manager core for npm and PyPI."""

from .constants import Constants

__version__ = Constants.PPM_VERSION
