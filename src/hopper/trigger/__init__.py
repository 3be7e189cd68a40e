"""Triggers that turn inbound work into job launches."""

from hopper.trigger.directory import DirectoryTrigger, PollResult

__all__ = ["DirectoryTrigger", "PollResult"]
