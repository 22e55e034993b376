"""Spatial voice room participant.

Tracks room state fed by a supervised room client process, filters speech by
proximity and can follow a peer along the path they walked.
"""

__version__ = "0.1.0"
