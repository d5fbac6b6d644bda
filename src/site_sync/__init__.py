"""site-sync: migrate extensions, themes, tables and media between installations."""

__version__ = '0.1.0'
