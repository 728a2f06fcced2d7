"""Remote request store collaborator."""

from triage_tracker.remote.client import TrackerClient, TrackerRemote

__all__ = ["TrackerClient", "TrackerRemote"]
