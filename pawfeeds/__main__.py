"""
Entry point for running pawfeeds as a module: python -m pawfeeds
"""

from pawfeeds.cli.commands import app

if __name__ == "__main__":
    app()
