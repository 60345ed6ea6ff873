"""
AllSky CLI - A driver and command-line tool for SBIG AllSky 340 cameras
"""

__version__ = "0.1.0"

from allsky_cli.main import main

# This function is a direct entry point for CLI use
def cli_main():
    """
    Entry point for the CLI command.
    This function is referenced in pyproject.toml
    """
    import sys
    sys.exit(main())
