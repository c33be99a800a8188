"""
Product Requirements Management

A requirements service organising epics, user stories, acceptance criteria
and requirements under configurable status workflows.
"""

import importlib.metadata

__version__ = importlib.metadata.version("product-requirements-management")
