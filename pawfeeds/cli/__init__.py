"""CLI module for pawfeeds."""
