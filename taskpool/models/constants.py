"""Constants for taskpool.

This module centralizes all magic numbers and default values used throughout the application.
"""

# Task defaults
DEFAULT_POINTS = 1
MIN_COMPLETION_PERCENTAGE = 0
MAX_COMPLETION_PERCENTAGE = 100
DEFAULT_TASK_TITLE = "New Task"

# Completion time is reported in hours
SECONDS_PER_HOUR = 3600.0

# Deadline sweep
DEFAULT_SWEEP_PAGE_SIZE = 500
