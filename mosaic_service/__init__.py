"""Mosaic preview service: fetch 2-4 remote images and flatten them into one."""

__version__ = "1.0.0"
