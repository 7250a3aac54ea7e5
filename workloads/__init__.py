"""
Workloads package - contains the worker apps run by the marketplace.

Import all app modules here to register them in the decorator registry.
"""

from workloads import donation_recommender

__all__ = ["donation_recommender", "llm", "utils"]
