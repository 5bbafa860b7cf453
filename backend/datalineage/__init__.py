"""
Data lineage engine

Fetches lineage metadata from a GraphQL endpoint, caches it per source, and
builds a directed graph that can be traced and filtered.
"""

__version__ = "0.1.0"
