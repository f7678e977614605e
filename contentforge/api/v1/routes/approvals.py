"""
Human-in-the-loop approval endpoint.

GET /api/v1/approvals/decide?id=...&action=approve|reject — one-click decision from the email link

No API key: the link itself is the credential. The response is always an
HTML page, since the caller is a browser opened from an email client.
"""

from __future__ import annotations

from fastapi import APIRouter, Query
from fastapi.responses import HTMLResponse

from contentforge.api.v1.deps import AppServices
from contentforge.core.errors import GoneError, InvalidTransitionError, NotFoundError
from contentforge.core.logging import get_logger
from contentforge.services.email_service import render_template

router = APIRouter(prefix="/approvals", tags=["approvals"])
logger = get_logger(__name__)

_VALID_ACTIONS = ("approve", "reject")


def _page(
    status_code: int,
    title: str,
    color: str,
    message: str,
    sub_message: str,
    request_id: str | None = None,
) -> HTMLResponse:
    html = render_template(
        "decision_page.html",
        title=title,
        color=color,
        message=message,
        sub_message=sub_message,
        request_id=request_id,
    )
    return HTMLResponse(content=html, status_code=status_code)


@router.get("/decide", response_class=HTMLResponse)
async def decide(
    services: AppServices,
    request_id: str | None = Query(default=None, alias="id"),
    action: str | None = Query(default=None),
) -> HTMLResponse:
    """Approve or reject a pending request from the email link."""
    if not request_id or action not in _VALID_ACTIONS:
        return _page(
            400,
            "Invalid Request",
            "#dc2626",
            "This link is missing a request id or a valid action.",
            "Open the link exactly as it appears in the approval email.",
        )

    try:
        await services.approvals.record_decision(request_id, action)
    except (NotFoundError, GoneError):
        logger.info("decision_link_expired", request_id=request_id, action=action)
        return _page(
            410,
            "Link Expired",
            "#d97706",
            "This approval link has expired or the request no longer exists.",
            "Submit the video again to generate fresh content.",
            request_id,
        )
    except InvalidTransitionError as e:
        logger.info(
            "decision_already_processed",
            request_id=request_id,
            action=action,
            current=e.current,
        )
        return _page(
            409,
            "Already Processed",
            "#2563eb",
            "A decision has already been recorded for this request.",
            "Nothing was changed.",
            request_id,
        )

    if action == "approve":
        return _page(
            200,
            "Approved!",
            "#16a34a",
            "Your content has been approved.",
            "You can publish it from the dashboard.",
            request_id,
        )
    return _page(
        200,
        "Rejected",
        "#dc2626",
        "Your content has been rejected.",
        "No further action will be taken for this request.",
        request_id,
    )
