"""
web/routes.py -- Server-rendered login page.

GET / renders the resource-owner login form. The OAuth parameters a client
put on the authorization URL (client_id, redirect_uri, state, response_type)
are carried into hidden fields; the page posts them with the credentials to
POST /auth/login and, on success, sends the browser to
redirect_uri?code=...&state=....

Nothing here is trusted: POST /auth/login re-validates every parameter.
Jinja2 autoescaping covers the reflected query parameters.

Routes:
  GET  /   -- login form
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

logger = logging.getLogger("tollgate.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

_FORWARDED_PARAMS = ("client_id", "redirect_uri", "state", "response_type")


@router.get("/", response_class=HTMLResponse)
def login_page(request: Request) -> HTMLResponse:
    """Render the login form with the authorization request parameters embedded."""
    params = {name: request.query_params.get(name, "") for name in _FORWARDED_PARAMS}
    if not params["response_type"]:
        params["response_type"] = "code"
    return templates.TemplateResponse(request, "login.html", {"params": params})
