"""Authenticator protocol and the default session-backed implementation."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .requests import CallContext

logger = logging.getLogger(__name__)


@runtime_checkable
class Authenticator(Protocol):
    """Answers group-membership questions about a caller."""

    def get_groups(self, context: CallContext) -> frozenset[str]: ...

    def has_group(self, context: CallContext, group: str) -> bool: ...


class SessionAuthenticator:
    """Reads group membership from the ``groups`` session value.

    The login flow stores groups either as a list or as a JSON-encoded
    list, so both are accepted.  Anything else counts as no groups.
    """

    def __init__(self, key: str = "groups") -> None:
        self.key = key

    def get_groups(self, context: CallContext) -> frozenset[str]:
        raw = context.session.get(self.key)
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                logger.debug("Unparseable %r session value: %r", self.key, raw)
                return frozenset()
        if not isinstance(raw, (list, tuple, set, frozenset)):
            return frozenset()
        return frozenset(str(g) for g in raw)

    def has_group(self, context: CallContext, group: str) -> bool:
        return group in self.get_groups(context)
