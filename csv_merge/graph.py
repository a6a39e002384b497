import logging

import requests

from .errors import DownstreamError, ProtocolError

GRAPH_ROOT = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
TOKEN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"


def acquire_graph_token(session, tenant_id, client_id, client_secret, timeout=30):
    """App-only token for Microsoft Graph (client credentials flow)."""
    token_url = TOKEN_URL.format(tenant_id=tenant_id)
    data = {
        "grant_type": "client_credentials",
        "client_id": client_id,
        "client_secret": client_secret,
        "scope": GRAPH_SCOPE,
    }
    try:
        resp = session.post(token_url, data=data, timeout=timeout)
    except requests.RequestException as exc:
        logging.error(f"[ERROR] Token request to {token_url} failed: {exc}")
        raise DownstreamError(f"Token request failed: {exc}") from exc

    if not resp.ok:
        logging.error(f"[ERROR] Token request failed: {resp.status_code} {resp.text[:200]}")
        raise DownstreamError(f"Token request failed with status {resp.status_code}.")

    try:
        access_token = resp.json().get("access_token")
    except ValueError:
        access_token = None
    if not access_token:
        raise ProtocolError("Token response missing access token.")
    return access_token
