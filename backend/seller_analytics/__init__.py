"""Seller analytics backend.

Synchronizes seller workspace data from the marketplace API into local
storage and serves comparative funnel/advertising reports over it.
"""
