"""TrackFlow workflow builder core."""
