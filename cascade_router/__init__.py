"""Tiered LLM cascade router.

See ``cascade_router.model_router`` for the routing components and
``python -m cascade_router --help`` for the developer CLI.
"""

__version__ = "0.1.0"
