"""
Storage adapter interface for Annota.
Defines the contract that all storage backends must implement.
"""

from datetime import datetime
from typing import Protocol, List, Dict, Any, Optional


class StorageAdapter(Protocol):
    """
    Protocol defining the interface for all storage adapters.

    Rows are returned as plain dicts with snake_case keys; the domain
    models in `models/` convert them (from_storage).
    """

    # ========== Users ==========

    def get_or_create_user(self, email: str) -> Dict[str, Any]:
        """
        Find a user by email, creating it on first sight.
        The email is the (demo-grade) owner credential.
        """
        ...

    # ========== Projects ==========

    def create_project(self, owner_id: str, name: str, base_url: str) -> Dict[str, Any]:
        """
        Create a project in IN_REVIEW state.

        Args:
            owner_id: Owning user id
            name: Display name
            base_url: Already-normalized absolute URL

        Returns:
            The created project row.
        """
        ...

    def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a project row by id, or None."""
        ...

    def get_owned_project(self, project_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a project only if owner_id owns it.
        A foreign project and a missing one both give None.
        """
        ...

    def list_projects(self, owner_id: str) -> List[Dict[str, Any]]:
        """Owner's projects, newest first."""
        ...

    # ========== Feedback links ==========

    def upsert_feedback_link(self, project_id: str, token: str) -> Dict[str, Any]:
        """
        Create the project's feedback link or rotate its token.
        The link is (re)activated either way.
        """
        ...

    def deactivate_feedback_link(self, project_id: str) -> bool:
        """
        Deactivate the project's link.

        Returns:
            False if the project has no link.
        """
        ...

    def get_feedback_link(self, token: str) -> Optional[Dict[str, Any]]:
        """Fetch a link by its public token (active or not)."""
        ...

    def get_feedback_link_for_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        ...

    # ========== Comments ==========

    def create_comment(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a comment row (see Comment.to_storage) and return it."""
        ...

    def get_comment(self, comment_id: str) -> Optional[Dict[str, Any]]:
        ...

    def list_comments(
        self,
        project_id: str,
        page_url: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        List a project's comments, newest first, optionally filtered
        by page path and status.
        """
        ...

    def update_comment_status(self, comment_id: str, status: str) -> Optional[Dict[str, Any]]:
        """Set a comment's status; returns the updated row or None if missing."""
        ...

    # ========== Approval requests ==========

    def create_approval_request(
        self,
        *,
        project_id: str,
        email: str,
        token: str,
        pin_hash: str,
        expires_at: datetime,
        now: datetime,
    ) -> Dict[str, Any]:
        """
        Atomically supersede every unused request of the project
        (used_at = now) and insert the new one.
        """
        ...

    def get_approval_request_by_token(self, token: str) -> Optional[Dict[str, Any]]:
        ...

    def approve_project(self, *, project_id: str, request_id: str, now: datetime) -> bool:
        """
        In ONE transaction:
            - projects.status = APPROVED, approved_at = now (only from IN_REVIEW)
            - approval_requests.used_at = now (only if still unused and unexpired)

        Returns:
            True if this call performed the transition, False if another
            writer got there first (nothing is written in that case).
        """
        ...

    def ping(self) -> None:
        """Cheap connectivity check for readiness probes."""
        ...
