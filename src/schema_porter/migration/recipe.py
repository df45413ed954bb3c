"""Export documents published at a URL ("recipes")."""

import logging
from urllib.parse import urlparse

import httpx

from schema_porter.errors import InvalidDocumentError, RemoteRequestError, RemoteServerError
from schema_porter.schema.document import parse_export_document
from schema_porter.schema.export_schema import ExportSchema

logger = logging.getLogger(__name__)

DEFAULT_RECIPE_LABEL = "Imported schema"


def recipe_label(url: str) -> str:
    """Human label for a recipe: the last path segment of its URL."""
    segments = [s for s in urlparse(url).path.split("/") if s]
    return segments[-1] if segments else DEFAULT_RECIPE_LABEL


async def fetch_recipe(
    url: str,
    label: str | None = None,
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[str, ExportSchema]:
    """Download and parse an export document.

    Returns:
        ``(label, export_schema)``.

    Raises:
        RemoteServerError: Network failure or 5xx.
        RemoteRequestError: Any other non-2xx status.
        InvalidDocumentError: The body is not a valid export document.
    """
    logger.info("Fetching recipe from %s", url)
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        error_cls = RemoteServerError if status >= 500 else RemoteRequestError
        raise error_cls(f"Could not fetch recipe (HTTP {status})", url=url, status_code=status) from e
    except httpx.RequestError as e:
        raise RemoteServerError(f"Could not fetch recipe: {e}", url=url) from e

    try:
        payload = response.json()
    except ValueError as e:
        raise InvalidDocumentError(f"Recipe at {url} is not valid JSON", url=url) from e

    doc = parse_export_document(payload)
    return label or recipe_label(url), ExportSchema(doc)
