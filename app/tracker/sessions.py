from __future__ import annotations

import logging

from app.tracker.backend import Backend, BackendScope
from app.tracker.domain import Identity

logger = logging.getLogger(__name__)


class SessionResolver:
    """
    Credential -> Identity, or None.

    Never raises: a credential the backend rejects resolves to None, and a
    membership lookup that fails for any reason means "not a developer".
    """

    def __init__(self, backend: Backend, developers_team_id: str | None = None) -> None:
        self.backend = backend
        self.developers_team_id = developers_team_id or backend.ids.developers_team_id

    def resolve(self, credential: str | None) -> Identity | None:
        if not credential:
            return None
        try:
            scope = self.backend.for_session(credential)
            record = scope.account.get()
            user_id = str(record["$id"])
            email = str(record.get("email") or "")
            name = str(record.get("name") or "")
        except Exception as e:
            logger.info("Session credential rejected: %s", e)
            return None

        return Identity(
            id=user_id,
            email=email,
            display_name=name or email,
            is_developer=self._is_developer(scope, user_id),
        )

    def _is_developer(self, scope: BackendScope, user_id: str) -> bool:
        try:
            memberships = scope.teams.list_memberships(self.developers_team_id)
        except Exception as e:
            # Team missing, or the user cannot see it: not a member.
            logger.debug("Developer membership check failed for %s: %s", user_id, e)
            return False
        return any(str(m.get("userId")) == user_id for m in memberships)
