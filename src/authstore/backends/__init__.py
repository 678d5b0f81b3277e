"""Concrete storage backends.

Each subpackage imports its own driver; import only the backend you use.
"""
