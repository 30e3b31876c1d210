"""
Daily agenda digest function endpoint.

POST  /functions/v1/daily-agenda-summary            scheduled run or test dispatch
GET|POST /functions/v1/daily-agenda-summary?preview=1  HTML preview (sample data)
OPTIONS /functions/v1/daily-agenda-summary          CORS preflight
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Header, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from docketq.agenda.dispatcher import AgendaDigestDispatcher
from docketq.api.middleware.auth import AgendaAuthorizer
from docketq.api.models import AgendaDigestRequest
from docketq.errors import DigestError
from docketq.observability.logging import get_logger
from docketq.observability.telemetry import log_event
from docketq.utils.redaction import mask_email

router = APIRouter(prefix="/functions/v1", tags=["agenda"])
logger = get_logger(__name__)

AGENDA_PATH = "/daily-agenda-summary"
PREVIEW_VALUES = ("1", "true", "yes")
DEFAULT_SOURCE = "manual"


def is_preview(value: str | None) -> bool:
    return (value or "").strip().lower() in PREVIEW_VALUES


async def read_body(request: Request) -> dict[str, Any]:
    """
    Parse the optional JSON body into a dict.

    A missing or malformed body, or one that is not a JSON object, counts as
    an empty payload.
    """
    raw = await request.body()
    data: Any = {}
    if raw:
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring malformed JSON body on %s", request.url.path)
            data = {}
    return data if isinstance(data, dict) else {}


def body_text(data: dict[str, Any], name: str) -> str | None:
    """A string field read without validation (used before authorization)."""
    value = data.get(name)
    if not isinstance(value, str):
        return None
    return value.strip() or None


def validate_payload(data: dict[str, Any], fields: tuple[str, ...] | None = None) -> AgendaDigestRequest:
    """
    Validate the body, or only the named fields of it.

    Raises:
        RequestValidationError: on bad field values (422)
    """
    if fields is not None:
        data = {name: data[name] for name in fields if name in data}
    try:
        return AgendaDigestRequest.model_validate(data)
    except ValidationError as e:
        raise RequestValidationError(e.errors()) from e


@router.options(AGENDA_PATH)
async def agenda_preflight() -> Response:
    return Response(status_code=200)


@router.api_route(AGENDA_PATH, methods=["GET", "POST"])
async def daily_agenda_summary(
    request: Request,
    preview: str | None = Query(None),
    secret: str | None = Query(None),
    x_agenda_secret: str | None = Header(None),
) -> Response:
    """Run the agenda digest, send a test email, or preview the template.

    Authorization runs before the body is validated, so an unauthorized
    caller always gets 401.

    Side Effects:
        - Reads commitments/profiles/settings/accounts from the agenda store
        - Sends emails through the configured mail provider (not in preview)
        - Logs telemetry events via log_event()
    """
    dispatcher: AgendaDigestDispatcher = request.app.state.dispatcher
    authorizer: AgendaAuthorizer = request.app.state.authorizer
    data = await read_body(request)

    if is_preview(preview):
        template = validate_payload(data, fields=("template",)).template
        html = dispatcher.preview(template)
        return HTMLResponse(html, headers={"Cache-Control": "no-cache"})

    if request.method != "POST":
        return JSONResponse(
            status_code=405,
            content={"error": "Use POST to run the digest or ?preview=1 to preview it"},
        )

    source = body_text(data, "source") or DEFAULT_SOURCE
    provided = authorizer.extract_secret(x_agenda_secret, body_text(data, "secret"), secret)
    authorizer.require(provided, source)

    payload = validate_payload(data)

    try:
        if payload.test_email:
            log_event("api.agenda.test", source=source, to=mask_email(payload.test_email))
            summary = await run_in_threadpool(
                dispatcher.send_test, payload.test_email, payload.template
            )
        else:
            log_event("api.agenda.run", source=source)
            summary = await run_in_threadpool(dispatcher.run, None, payload.template)
    except DigestError:
        raise
    except Exception as e:
        logger.exception("daily-agenda-summary error")
        return JSONResponse(status_code=500, content={"error": str(e)})

    return JSONResponse(content=summary.to_dict())
