"""Concrete adapters for the interfaces in :mod:`sitekb.interfaces`."""
