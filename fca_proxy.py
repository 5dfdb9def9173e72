#!/usr/bin/env python3

import dataclasses
import json
import logging
import os
import requests

from requests.structures import CaseInsensitiveDict

logger = logging.getLogger(__name__)

FCA_HOST = "register.fca.org.uk"
SERVICE_PREFIX = "/services/V0.1"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "X-Auth-Email, X-Auth-Key, Content-Type",
}

UPSTREAM_HEADERS = {
    "Accept": "application/json",
    "Accept-Language": "en-GB,en;q=0.9",
    # The register's bot detection looks at the user agent.
    "User-Agent": ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
                   "AppleWebKit/537.36 (KHTML, like Gecko) "
                   "Chrome/122.0.0.0 Safari/537.36"),
}

USAGE = "Missing or invalid ?path= parameter. Example: ?path=/Firm/122702/Individuals"

@dataclasses.dataclass(frozen=True)
class Config:
    port: int = 3000
    base_url: str = f"https://{FCA_HOST}{SERVICE_PREFIX}"
    timeout: float = 10

    @classmethod
    def from_env(cls, environ=os.environ):
        if port := environ.get("PORT"):
            return cls(port=int(port))
        return cls()

class ProxyError(Exception):
    status_code = 500

    def __init__(self, message, detail=None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def body(self):
        body = {"error": self.message}
        if self.detail is not None:
            body["detail"] = self.detail
        return body

class BadRequest(ProxyError):
    status_code = 400

class Unauthorized(ProxyError):
    status_code = 401

class MethodNotAllowed(ProxyError):
    status_code = 405

class UpstreamUnreachable(ProxyError):
    status_code = 502

class UpstreamBlocked(ProxyError):
    status_code = 503

def validate(params, headers):
    """Return `(path, credentials)` or raise :class:`ProxyError`."""
    path = params.get("path")
    if not path or not path.startswith("/"):
        raise BadRequest(USAGE)
    headers = CaseInsensitiveDict(headers)
    email = headers.get("X-Auth-Email") or ""
    key = headers.get("X-Auth-Key") or ""
    if not email or not key:
        raise Unauthorized("Missing X-Auth-Email or X-Auth-Key headers")
    return path, {"X-Auth-Email": email, "X-Auth-Key": key}

def forward(path, credentials, config):
    """Fetch `path` from the register, returning status code and full body."""
    try:
        response = requests.get(config.base_url + path,
                                headers={**credentials, **UPSTREAM_HEADERS},
                                timeout=config.timeout,
                                allow_redirects=False)
    except requests.RequestException as error:
        logger.warning("Failed to reach %s: %s", path, error)
        raise UpstreamUnreachable("Failed to reach FCA API", str(error))
    return response.status_code, response.content.decode("utf-8", errors="replace")

def is_blocked(body):
    # An HTML challenge page can come with status 200.
    return "Just a moment" in body or body.lstrip().startswith("<!DOCTYPE")

def classify(path, status_code, body):
    if is_blocked(body):
        logger.warning("Blocked fetching %s (upstream status %d)", path, status_code)
        raise UpstreamBlocked("FCA API blocked the request. Please try again in a moment.")
    return response(status_code, body)

def response(status_code, body=None):
    headers = dict(CORS_HEADERS)
    if body is not None:
        headers["Content-Type"] = "application/json"
    return {
        "statusCode": status_code,
        "headers": headers,
        "body": "" if body is None else body,
    }

def error_response(error):
    return response(error.status_code, json.dumps(error.body(), separators=(",", ":")))

def handle(method, params, headers, config):
    if method == "OPTIONS":
        return response(204)
    try:
        if method != "GET":
            raise MethodNotAllowed("Only GET requests supported")
        path, credentials = validate(params, headers)
        status_code, body = forward(path, credentials, config)
        return classify(path, status_code, body)
    except ProxyError as error:
        return error_response(error)

def lambda_handler(event, context):
    method = (event.get("httpMethod") or
              (event.get("requestContext") or {}).get("http", {}).get("method") or
              "GET")
    params = event.get("queryStringParameters") or {}
    headers = event.get("headers") or {}
    return handle(method, params, headers, Config.from_env())
