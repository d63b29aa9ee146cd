"""Source control collaborators."""

from autodev.vcs.git import GitSourceControl, SourceControl

__all__ = ["GitSourceControl", "SourceControl"]
