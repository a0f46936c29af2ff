#!/usr/bin/env python3
"""
Rate Change Notification Agent

Main CLI interface for the rate change notification system.
Provides commands for:
- Creating the tracking table
- Running the API server
- Finding the Clio custom field
- Viewing a year's notification status
- Marking clients sent / not applicable, and undoing either
- Re-syncing matter attorneys from Clio
"""
import click

from commands.rate_changes import COMMANDS, configure_logging


# ============================================================================
# CLI Group
# ============================================================================

@click.group()
@click.version_option(version="1.0.0")
@click.option("--verbose", "-v", is_flag=True, help="Show progress logging")
def cli(verbose: bool):
    """
    Rate Change Notification Agent

    Track which clients have been told about the annual rate change and
    keep the "Date of Rate Change" field on their Clio matters in step.
    """
    configure_logging(verbose)


for command in COMMANDS:
    cli.add_command(command)


# ============================================================================
# Main Entry Point
# ============================================================================

def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
