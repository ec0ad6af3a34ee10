"""Console progress output."""

from specstat.ui.reporter import CloneStatus, ConsoleReporter, Reporter
from specstat.ui.spinner import SpinnerManager

__all__ = ["CloneStatus", "ConsoleReporter", "Reporter", "SpinnerManager"]
