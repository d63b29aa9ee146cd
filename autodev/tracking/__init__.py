"""Ticket tracker collaborators."""

from autodev.tracking.issues import GitHubIssueTracker, NullIssueTracker, TicketTracker

__all__ = ["GitHubIssueTracker", "NullIssueTracker", "TicketTracker"]
