"""
Blueprint packages.

Each package exposes its Blueprint object from __init__.py; routes live in routes.py.
"""
