"""Report writers (JSON / CSV) and ASCII formatters for the CLI."""
