"""VCCE - local daemon serving file system, shell and AI commands to code editors."""

__version__ = "0.1.0"
