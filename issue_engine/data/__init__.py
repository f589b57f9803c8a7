"""Data module - operational entities read by issue detection."""
from issue_engine.data import models

__all__ = ["models"]
