"""
stash_client.rest - Stash REST queries
=======================================
"""

from stash_client.rest.query import StashQuery

__all__ = [
    "StashQuery",
]
