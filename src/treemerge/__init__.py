"""Concatenate the text files of a directory tree into one or more output files."""

__version__ = "0.1.0"
