#!/usr/bin/env python3

import logging

from fca_proxy import Config
from fca_proxy import handle
from http.server import BaseHTTPRequestHandler
from http.server import ThreadingHTTPServer
from urllib.parse import parse_qs
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

class Handler(BaseHTTPRequestHandler):

    config = Config()
    timeout = 30

    def dispatch(self):
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            length = 0
        if length > 0:
            self.rfile.read(length)
        query = urlsplit(self.path).query
        params = {k: v[0] for k, v in parse_qs(query).items()}
        headers = dict(self.headers.items())
        response = handle(self.command, params, headers, self.config)
        body = response["body"].encode("utf-8")
        self.send_response(response["statusCode"])
        for name, value in response["headers"].items():
            self.send_header(name, value)
        if response["statusCode"] != 204:
            self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def __getattr__(self, name):
        # Every method, including unknown verbs, goes through handle.
        if name.startswith("do_"):
            return self.dispatch
        raise AttributeError(name)

    def log_message(self, format, *args):
        pass

def make_server(config, host=""):
    handler = type("Handler", (Handler,), {"config": config})
    return ThreadingHTTPServer((host, config.port), handler)

def main():
    logging.basicConfig(level=logging.INFO)
    config = Config.from_env()
    server = make_server(config)
    logger.info("FCA proxy running on port %d, forwarding to %s", config.port, config.base_url)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()

if __name__ == "__main__":
    main()
