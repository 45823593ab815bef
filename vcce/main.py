#!/usr/bin/env python3
"""
Main entry point for the Typer-based VCCE CLI.

This delegates to the UI layer in vcce.ui.cli to keep the console
script mapping stable.
"""

from vcce.ui.cli import main as vcce


if __name__ == "__main__":
    vcce()
