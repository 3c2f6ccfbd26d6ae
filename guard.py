import logging
from typing import Optional

from errors import Unauthorized

logger = logging.getLogger(__name__)


class AuthorizationGuard:
    """Checks the invoking principal against the principals a record names.

    Two modes: the record's own owner (farmer) for ordinary mutations, and a
    delegate bound into the record at creation (the plot validator).
    """

    def require_signer(self, caller: Optional[str], action: str) -> None:
        if not caller:
            raise Unauthorized(f"{action} requires a signing principal")

    def require_owner(self, caller: Optional[str], owner: str, action: str) -> None:
        self._check(caller, owner, action, "owner")

    def require_bound(self, caller: Optional[str], record, field: str, action: str) -> None:
        bound = getattr(record, field, None)
        if bound is None:
            raise Unauthorized(f"{action}: record has no bound {field}")
        self._check(caller, bound, action, field)

    def _check(self, caller: Optional[str], expected: str, action: str, role: str) -> None:
        if not caller or caller != expected:
            logger.warning("rejected %s by %r: not the %s", action, caller, role)
            raise Unauthorized(f"{action} requires the {role} principal")
