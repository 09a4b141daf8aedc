"""Command layer: argparse router and plain-text renderer."""
