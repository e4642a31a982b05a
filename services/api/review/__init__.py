"""
Host side of the review tool: what the review page knows about the
framed site.
"""
from .session import CommentDraft, LoadStatus, ReviewSession, ViewportPin

__all__ = ["CommentDraft", "LoadStatus", "ReviewSession", "ViewportPin"]
