"""
Fandom (MediaWiki) login for the Leaguepedia API.

Logged-in sessions get a higher Cargo rate limit. Login is a two-step
handshake: fetch a login token (which also opens a temporary session cookie),
then POST the credentials with that token *and* that cookie. Dropping the
first cookie makes step two fail with "Session timed out".
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx

from config import Config

logger = logging.getLogger(__name__)


class AuthFailed(Exception):
    """Login could not produce a session; callers continue anonymously."""
    pass


@dataclass(frozen=True)
class AuthSession:
    """Reusable logged-in session."""

    cookie: str
    user_agent: str


def extract_cookies(set_cookie_headers: List[str]) -> str:
    """
    Reduce Set-Cookie headers to a Cookie request header value.

    Keeps only the ``name=value`` part of each cookie, drops attributes.
    """
    pairs = []
    for header in set_cookie_headers:
        # Some proxies fold several cookies into one comma-joined header
        for part in header.split(","):
            pair = part.split(";")[0].strip()
            if "=" in pair:
                pairs.append(pair)
    return "; ".join(pairs)


def user_agent_for(username: str) -> str:
    return f"LoL-Stats-Worker/1.0 ({username})"


async def login(config: Config, http_client: Optional[httpx.AsyncClient] = None) -> AuthSession:
    """
    Log in to Fandom with FANDOM_USER / FANDOM_PASS.

    Args:
        config: Service configuration
        http_client: Optional client (tests inject a mock transport)

    Returns:
        AuthSession with the final cookie and the user agent to reuse

    Raises:
        AuthFailed: Missing credentials or any failure in the handshake
    """
    if not config.has_fandom_credentials:
        raise AuthFailed("FANDOM_USER or FANDOM_PASS not set")

    api = config.leaguepedia_api_url
    ua = user_agent_for(config.fandom_user)
    # Cookies are relayed by hand; a cookie jar would merge them differently
    client = http_client or httpx.AsyncClient(timeout=30.0, follow_redirects=True)
    owns_client = http_client is None

    try:
        # Step 1: login token plus the temporary session cookie
        token_resp = await client.get(
            api,
            params={"action": "query", "meta": "tokens", "type": "login", "format": "json"},
            headers={"User-Agent": ua},
        )
        if not token_resp.is_success:
            raise AuthFailed(f"Token HTTP Error: {token_resp.status_code}")

        token_data = token_resp.json()
        login_token = (((token_data or {}).get("query") or {}).get("tokens") or {}).get("logintoken")
        if not login_token:
            raise AuthFailed("Failed to get login token")

        step1_cookie = extract_cookies(token_resp.headers.get_list("set-cookie"))

        # Step 2: credentials, token and the step-1 cookie
        login_resp = await client.post(
            api,
            data={
                "action": "login",
                "format": "json",
                "lgname": config.fandom_user,
                "lgpassword": config.fandom_pass,
                "lgtoken": login_token,
            },
            headers={"User-Agent": ua, "Cookie": step1_cookie},
        )
        login_data = login_resp.json()
        result = (login_data or {}).get("login") or {}

        if result.get("result") != "Success":
            reason = result.get("reason") if result else login_data
            raise AuthFailed(f"Login Failed: {reason}")

        final_cookie = extract_cookies(login_resp.headers.get_list("set-cookie"))
        logger.info("Authenticated with Fandom", extra={"username": result.get("lgusername")})
        return AuthSession(cookie=final_cookie, user_agent=ua)

    except httpx.HTTPError as e:
        raise AuthFailed(f"Auth transport error: {e}") from e
    except ValueError as e:
        # Non-JSON body from either step
        raise AuthFailed(f"Auth response was not JSON: {e}") from e
    finally:
        if owns_client:
            await client.aclose()
