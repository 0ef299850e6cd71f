"""
card_valuation/__main__.py: Entry point for running CLI as module
Allows: python -m card_valuation <command>
"""

from card_valuation.cli.main import cli

if __name__ == '__main__':
    cli()
