"""
dailycast: resumable execution engine for a daily multi-stage content pipeline.

Sequences pluggable stages (topic sourcing, scripting, synthesis, visuals,
publishing), decides between aborting, skipping, degrading, or continuing
on failure, and persists enough state to resume a run where it stopped.
"""

__version__ = "0.1.0"
