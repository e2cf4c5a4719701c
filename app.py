from flask import Flask, Response, current_app, request
import requests
import argparse
import os
import logging
import sys
from urllib.parse import quote, urlsplit
from waitress import serve
from werkzeug.routing import Rule

from proxy_config import DEFAULT_CONFIG_PATH, ConfigInvalid, load_config
from wake import WakeFailed, WakeOrchestrator, WakeState
from wol import InvalidAddress

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192
# Characters that stay literal when a decoded path has to be re-quoted.
PATH_SAFE_CHARS = "/:@!$&'()*+,;=~"

# Connection-level headers belong to each hop; the WSGI server sets its own.
HOP_BY_HOP_HEADERS = {
    'connection',
    'keep-alive',
    'proxy-authenticate',
    'proxy-authorization',
    'te',
    'trailer',
    'trailers',
    'transfer-encoding',
    'upgrade',
}


class ForwardFailed(Exception):
    """The backend could not be reached after it was reported up."""


class RelayResponse(Response):
    # Never invent a Content-Type the backend didn't send.
    default_mimetype = None


def setup_logging():
    log_level = os.getenv('LOG_LEVEL', 'INFO').upper()
    logging.basicConfig(level=log_level, format='%(asctime)s - %(levelname)s - %(message)s')
    return log_level


def request_target_path(environ, path):
    """Return the path of the request target exactly as the client sent it."""
    raw_uri = environ.get('REQUEST_URI') or environ.get('RAW_URI')
    if raw_uri:
        return urlsplit(raw_uri).path or '/'
    # No raw target from the server; re-quote the decoded path.
    return quote(path, safe=PATH_SAFE_CHARS)


def build_destination_url(config, path, query_string=b''):
    """Rebuild the full request target (path and query) against the backend."""
    if not path.startswith('/'):
        path = '/' + path
    url = f"{config.server_url}{path}"
    if query_string:
        url = f"{url}?{query_string.decode('latin-1')}"
    return url


def forward_request(config, method, url, headers, data):
    try:
        return requests.request(
            method=method,
            url=url,
            data=data,
            headers=headers,
            timeout=config.request_timeout,  # Connect and first byte; the body streams without a deadline
            stream=True,
            allow_redirects=False,
        )
    except requests.RequestException as e:
        raise ForwardFailed(f"Request to {url} failed: {e}") from e


def relay_response(upstream):
    """Mirror an upstream response without decoding or buffering its body."""
    headers = [(name, value) for (name, value) in upstream.raw.headers.items()
               if name.lower() not in HOP_BY_HOP_HEADERS]
    relay = RelayResponse(
        upstream.raw.stream(CHUNK_SIZE, decode_content=False),
        status=upstream.status_code,
        headers=headers,
    )
    relay.call_on_close(upstream.close)
    return relay


def proxy_request(path):
    config = current_app.config['PROXY_CONFIG']
    orchestrator = current_app.config['ORCHESTRATOR_FACTORY'](config)

    logger.debug(f"Received request for path: /{path}, method: {request.method}")

    try:
        state = orchestrator.run()
    except WakeFailed as e:
        logger.error(f"Failed to send WOL packet: {e}")
        return "Failed to send WOL packet", 500

    if state is not WakeState.UP:
        logger.error(f"Server {config.server_address} is not responding after {config.retry_attempts} retries")
        return "Server is not responding", 504

    destination_url = build_destination_url(
        config, request_target_path(request.environ, request.path), request.query_string)
    headers = {key: value for (key, value) in request.headers
               if key.lower() != 'host' and key.lower() not in HOP_BY_HOP_HEADERS}

    logger.info(f"Forwarding {request.method} request to {destination_url}")
    try:
        upstream = forward_request(config, request.method, destination_url, headers, request.get_data())
    except ForwardFailed as e:
        logger.error(f"Failed to reach server {config.server_address} after it was reported up: {e}")
        return "Failed to reach server", 502

    logger.info(f"Proxying response from {destination_url} with status code: {upstream.status_code}")
    return relay_response(upstream)


def create_app(config, orchestrator_factory=WakeOrchestrator):
    app = Flask(__name__)
    app.config['PROXY_CONFIG'] = config
    app.config['ORCHESTRATOR_FACTORY'] = orchestrator_factory
    # No methods list, so every method (TRACE, PROPFIND, ...) is forwarded.
    app.url_map.add(Rule('/', endpoint='proxy_root', defaults={'path': ''}))
    app.url_map.add(Rule('/<path:path>', endpoint='proxy_path'))
    app.view_functions['proxy_root'] = proxy_request
    app.view_functions['proxy_path'] = proxy_request
    return app


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="HTTP reverse proxy that wakes its backend with Wake-on-LAN on demand.")
    parser.add_argument('--config', default=os.getenv('WOL_PROXY_CONFIG', DEFAULT_CONFIG_PATH),
                        help="Path to config file")
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    log_level = setup_logging()

    try:
        config = load_config(args.config)
    except (ConfigInvalid, InvalidAddress) as e:
        logger.error(f"Error loading configuration: {e}")
        sys.exit(1)

    host, port = config.listen_address
    logger.info(f"Starting wake-on-lan-proxy {__version__} on {host}:{port}")
    logger.info(f"Log level set to: {log_level}")
    logger.info(f"Config path: {args.config}")
    logger.info(f"Proxying requests to {config.server_address}")
    logger.info(f"  MAC Address: {config.mac_address}")
    logger.info(f"  WoL target: {config.broadcast_address}:{config.wol_port}")
    logger.info(f"  Check Interval: {config.check_interval} seconds")
    logger.info(f"  Retry Attempts: {config.retry_attempts}")
    logger.info(f"  Request Timeout: {config.request_timeout} seconds")
    logger.info(f"  Threads: {config.threads}")

    serve(create_app(config), host=host, port=port, threads=config.threads)


if __name__ == '__main__':
    main()
