"""Authentication handlers for the source API.

Every handler installs its credentials on the requests session used to
fetch pages. Credentials are resolved once per run, when the session is
built, before the first page is fetched.

Supported methods (config key "auth_method"):
  - no_auth:      No authentication
  - bearer_auth:  Bearer token in Authorization header
  - basic_auth:   HTTP Basic Authentication (username/password)
  - api_key:      Static API key sent in a configurable header
  - oauth2:       OAuth 2.0 client_credentials or password grant
  - session:      Login call exchanging credentials for a session token
"""

import logging

import requests
from requests.auth import HTTPBasicAuth

LOGGER = logging.getLogger(__name__)

TOKEN_REQUEST_TIMEOUT = 30


class AuthError(Exception):
    """Raised when authentication fails."""


class NoAuth:
    """No authentication -- pass-through."""

    def __init__(self, config=None):
        pass

    def apply(self, session):
        return session


class BearerTokenAuth:
    """Static Bearer token authentication.

    Config keys:
        token - The bearer token value
    """

    def __init__(self, config):
        self.token = config["token"]

    def apply(self, session):
        session.headers["Authorization"] = f"Bearer {self.token}"
        return session


class BasicAuth:
    """HTTP Basic Authentication.

    Config keys:
        username - The username
        password - The password
    """

    def __init__(self, config):
        self.username = config["username"]
        self.password = config["password"]

    def apply(self, session):
        session.auth = HTTPBasicAuth(self.username, self.password)
        return session


class ApiKeyAuth:
    """API key authentication.

    Config keys:
        api_key_header - Header name (default: "X-API-Key")
        api_key_value  - The API key value
    """

    def __init__(self, config):
        self.header_name = config.get("api_key_header") or "X-API-Key"
        self.api_key = config["api_key_value"]

    def apply(self, session):
        session.headers[self.header_name] = self.api_key
        return session


class OAuth2Auth:
    """OAuth 2.0 authentication.

    One token request is made when the handler is applied; the run then
    uses the resulting access token.

    Supports two grant types:
      - client_credentials: Uses client_id + client_secret
      - password_credentials: Also sends username + password

    Config keys:
        token_url     - Token endpoint URL (required)
        client_id     - Client ID (required)
        client_secret - Client secret (required)
        grant_type    - "client_credentials" (default) or "password_credentials"
        username      - Resource owner username (password grant)
        password      - Resource owner password (password grant)
        scope         - OAuth scope(s) (optional)
    """

    def __init__(self, config):
        self.token_url = config["token_url"]
        self.client_id = config["client_id"]
        self.client_secret = config["client_secret"]
        self.grant_type = config.get("grant_type") or "client_credentials"
        self.username = config.get("username")
        self.password = config.get("password")
        self.scope = config.get("scope")

    def _is_password_grant(self):
        return self.grant_type.lower() in ("password", "password_credentials")

    def _request_token(self):
        """Request an access token from the OAuth2 provider."""
        payload = {
            "grant_type": "password" if self._is_password_grant() else self.grant_type,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }

        if self._is_password_grant():
            if not self.username or not self.password:
                raise AuthError("username and password are required for the password grant type")
            payload["username"] = self.username
            payload["password"] = self.password

        if self.scope:
            payload["scope"] = self.scope

        LOGGER.info("Requesting OAuth2 token from %s (grant_type=%s)",
                    self.token_url, payload["grant_type"])

        try:
            resp = requests.post(self.token_url, data=payload, timeout=TOKEN_REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise AuthError(f"OAuth2 token request failed: {e}") from e

        if resp.status_code != 200:
            raise AuthError(
                f"OAuth2 token request failed ({resp.status_code}): {resp.text[:500]}"
            )

        try:
            return resp.json()["access_token"]
        except (ValueError, KeyError) as e:
            raise AuthError("OAuth2 token response has no access_token") from e

    def apply(self, session):
        session.headers["Authorization"] = f"Bearer {self._request_token()}"
        return session


class SessionAuth:
    """Session token authentication.

    A login URL is called with either Basic credentials or a user token;
    the returned session_token is then sent as the Session-Token header.
    An optional application token is sent on every request as App-Token.

    Config keys:
        login_url  - Login endpoint (required)
        username   - Username (with password)
        password   - Password
        user_token - User token, used when no username/password is set
        app_token  - Application token (optional)
    """

    def __init__(self, config):
        self.login_url = config["login_url"]
        self.username = config.get("username")
        self.password = config.get("password")
        self.user_token = config.get("user_token")
        self.app_token = config.get("app_token")

    def _login(self):
        login_headers = {"Content-Type": "application/json"}
        login_auth = None
        if self.username and self.password:
            login_auth = HTTPBasicAuth(self.username, self.password)
        elif self.user_token:
            login_headers["Authorization"] = f"user_token {self.user_token}"
        else:
            raise AuthError("session auth requires username/password or user_token")
        if self.app_token:
            login_headers["App-Token"] = self.app_token

        LOGGER.info("Opening session at %s", self.login_url)
        try:
            resp = requests.get(self.login_url, headers=login_headers, auth=login_auth,
                                timeout=TOKEN_REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise AuthError(f"Session login failed: {e}") from e

        if resp.status_code != 200:
            raise AuthError(f"Session login failed ({resp.status_code}): {resp.text[:500]}")

        try:
            session_token = resp.json().get("session_token")
        except (ValueError, AttributeError):
            session_token = None
        if not session_token:
            raise AuthError("Session login response has no session_token")
        return session_token

    def apply(self, session):
        session.headers["Session-Token"] = self._login()
        if self.app_token:
            session.headers["App-Token"] = self.app_token
        return session


AUTH_METHODS = {
    "no_auth": NoAuth,
    "bearer_auth": BearerTokenAuth,
    "basic_auth": BasicAuth,
    "api_key": ApiKeyAuth,
    "oauth2": OAuth2Auth,
    "session": SessionAuth,
}

# camelCase names used by older configurations
AUTH_METHOD_ALIASES = {
    "noAuth": "no_auth",
    "bearerAuth": "bearer_auth",
    "basicAuth": "basic_auth",
    "apiKey": "api_key",
}


def build_auth(auth_config):
    """Factory: build the appropriate auth handler from config.

    Args:
        auth_config: The "auth" block of the config, or None.

    Returns:
        An auth handler instance with an apply(session) method.
    """
    if not auth_config:
        return NoAuth()

    auth_method = auth_config.get("auth_method", "no_auth")
    auth_method = AUTH_METHOD_ALIASES.get(auth_method, auth_method)

    if auth_method not in AUTH_METHODS:
        raise AuthError(
            f"Unknown auth_method: '{auth_method}'. "
            f"Supported: {', '.join(AUTH_METHODS.keys())}"
        )
    try:
        return AUTH_METHODS[auth_method](auth_config)
    except KeyError as e:
        raise AuthError(f"Missing auth config key for {auth_method}: {e}") from e


def resolve_auth(config):
    """Build the source API auth handler for a run.

    Honors the legacy "authorization_header" setting (a raw Authorization
    value) when no "auth" block is configured.
    """
    auth_config = config.get("auth")
    if not auth_config and config.get("authorization_header"):
        return ApiKeyAuth({"api_key_header": "Authorization",
                           "api_key_value": config["authorization_header"]})

    LOGGER.info("Authentication method: %s",
                (auth_config or {}).get("auth_method", "no_auth"))
    return build_auth(auth_config)
