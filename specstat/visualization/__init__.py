"""Report rendering."""

from specstat.visualization.formatters import OutputFormatter

__all__ = ["OutputFormatter"]
