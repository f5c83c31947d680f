"""Storefront operations built on the cache and the mutation pipeline."""
