"""Error taxonomy for schema export/import.

Errors fall into four families:

- **Transient remote errors** (rate limiting, authentication, server
  failures) -- surfaced to the caller with ``retryable=True`` so a UI or
  CLI can offer "retry".
- **Structural errors** (malformed export documents, ambiguous roots) --
  terminal for the document that caused them.
- **Resolution errors** -- an import was requested while conflicts are
  unresolved or invalid.
- **Cancellation of an export** -- always user-initiated.

Per-entity failures during an import are *not* exceptions at the API
boundary: the executor records them in ``ImportResult.failed``.

Usage:
    from schema_porter.errors import RateLimitedError, SchemaPorterError

    try:
        graph = await build_graph(source, [root])
    except RateLimitedError as e:
        print(e.to_dict())
"""

from typing import Any


class SchemaPorterError(Exception):
    """Base class for all schema-porter errors.

    Every error carries a stable ``code``, a human-readable ``message``
    and arbitrary keyword ``context`` (also exposed as attributes).
    """

    code: str = "PORTER-000"
    retryable: bool = False

    _RESERVED_ATTRS = frozenset({"code", "message", "context", "args", "retryable"})

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        for key, value in context.items():
            if key not in self._RESERVED_ATTRS:
                setattr(self, key, value)
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a JSON-serializable dict."""
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "context": {k: str(v) for k, v in self.context.items()},
        }


# ============================================================================
# Remote errors
# ============================================================================


class RemoteError(SchemaPorterError):
    """Base class for failures reported by the schema-management API."""

    code = "PORTER-REM000"


class TransientRemoteError(RemoteError):
    """A remote failure that may succeed if retried later."""

    code = "PORTER-REM001"
    retryable = True


class RateLimitedError(TransientRemoteError):
    """The API throttled the request (HTTP 429)."""

    code = "PORTER-REM002"


class AuthenticationError(TransientRemoteError):
    """The API token is missing, invalid or lacks permissions (401/403)."""

    code = "PORTER-REM003"


class RemoteServerError(TransientRemoteError):
    """The API failed with a 5xx status or the connection dropped."""

    code = "PORTER-REM004"


class RemoteRequestError(RemoteError):
    """The API rejected the request (4xx other than auth/throttling)."""

    code = "PORTER-REM005"


# ============================================================================
# Structural errors
# ============================================================================


class StructuralError(SchemaPorterError):
    """Base class for problems with the shape of an export document."""

    code = "PORTER-DOC000"


class InvalidDocumentError(StructuralError):
    """The export document is malformed or uses an unsupported version."""

    code = "PORTER-DOC001"


class AmbiguousRootError(StructuralError):
    """A version-1 document has no single item type usable as root."""

    code = "PORTER-DOC002"

    def __init__(self, candidate_ids: list[str]) -> None:
        super().__init__(
            "This export file was generated by an older version of the "
            "exporter, and the initial model/block model cannot be "
            f"determined ({len(candidate_ids)} candidates). Export the "
            "schema again with a current version.",
            candidate_ids=candidate_ids,
        )


# ============================================================================
# Lookup / workflow errors
# ============================================================================


class EntityNotFoundError(SchemaPorterError):
    """A schema source has no entity with the requested id."""

    code = "PORTER-ENT001"

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(
            f"{kind} with ID '{entity_id}' not found",
            kind=kind,
            entity_id=entity_id,
        )


class UnresolvedConflictError(SchemaPorterError):
    """Import was requested while conflicts are unresolved or invalid."""

    code = "PORTER-RES001"

    def __init__(self, errors: dict[str, str]) -> None:
        details = "; ".join(f"{key}: {msg}" for key, msg in sorted(errors.items()))
        super().__init__(
            f"{len(errors)} conflict(s) must be resolved before importing: {details}",
            errors=errors,
        )


class ExportCancelledError(SchemaPorterError):
    """The export builder observed a cancellation request."""

    code = "PORTER-TSK001"

    def __init__(self) -> None:
        super().__init__("Export cancelled")


class ProfileNotFoundError(SchemaPorterError):
    """No project profile is configured."""

    code = "PORTER-CFG001"
