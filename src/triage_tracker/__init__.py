"""Client core for the email triage request tracker."""

__version__ = "0.1.0"
