# SPDX-License-Identifier: MPL-2.0
"""
FHE Ledger - Main entry point for the CLI.
"""

from fhe_ledger.cli.main import cli

if __name__ == "__main__":
    cli()
