"""Application factory and command line entry point for MoviePolls.

Uses the Flask Application Factory pattern: create_app() opens the data
backend, wires the engines, installs the encrypted session cookie,
registers error handlers and blueprints, and (outside tests) prints the
admin claim link when the site has no admin yet.
"""

import argparse
import logging
import os
import sys

from flask import Flask, abort, send_from_directory

from config import Settings, get_settings, reload_settings
from error_handler import MoviePollsError
from log_setup import setup_logging
from version import __version__

logger = logging.getLogger(__name__)


def create_app(testing=False, data=None, settings: Settings = None):
    """Create and configure the Flask application.

    Args:
        testing: If True, leave logging alone and skip the admin bootstrap.
        data: Ready DataConnector to use instead of opening the configured one.
        settings: Settings to use instead of the process singleton.

    Returns:
        Configured Flask application instance.
    """
    from auth import init_auth
    from db import get_data_connector
    from error_handler import register_error_handlers
    from extensions import build_services, init_services
    from routes import register_blueprints
    from services.sessions import SESSION_COOKIE_NAME, FernetSessionInterface, derive_fernet_key
    from services.site_config import SESSION_AUTH, SESSION_ENCRYPT

    settings = settings or get_settings()
    if not testing:
        setup_logging(settings.log_level, settings.log_file, settings.log_format)

    app = Flask(__name__, static_folder=None)
    app.testing = testing
    app.config.update(
        SESSION_COOKIE_NAME=SESSION_COOKIE_NAME,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        # Hard cap well above the poster limit; the poster check reports its own message
        MAX_CONTENT_LENGTH=settings.max_upload_size * 2,
    )

    if data is None:
        data = get_data_connector(settings.db_backend, settings.get_db_connection())
    services = build_services(settings, data)
    init_services(app, services)

    seeded = services.site_config.load_defaults_if_not_set()
    logger.info("MoviePolls %s starting on %s backend (%d config defaults seeded)",
                __version__, settings.db_backend, seeded)

    site_config = services.site_config
    app.session_interface = FernetSessionInterface(
        lambda: derive_fernet_key(site_config.get_secret(SESSION_AUTH), site_config.get_secret(SESSION_ENCRYPT))
    )

    register_error_handlers(app)
    init_auth(app)
    register_blueprints(app)
    _register_app_routes(app, settings)

    if not testing:
        services.accounts.bootstrap_admin()

    return app


def _register_app_routes(app, settings: Settings):
    """Register file routes: /static/*, /posters/* and /favicon.ico."""
    static_dir = os.path.abspath(settings.static_dir)
    posters_dir = os.path.abspath(settings.posters_dir)

    @app.route("/static/<path:filename>", methods=["GET"])
    def static_files(filename):
        return send_from_directory(static_dir, filename)

    @app.route("/posters/<path:filename>", methods=["GET"])
    def posters(filename):
        return send_from_directory(posters_dir, filename)

    @app.route("/favicon.ico", methods=["GET"])
    def favicon():
        if not os.path.isfile(os.path.join(static_dir, "favicon.ico")):
            abort(404)
        return send_from_directory(static_dir, "favicon.ico")


def _parse_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"Listen address {addr!r} must be host:port")
    return host, int(port)


def main(argv=None) -> int:
    """Command line entry point (``moviepolls`` console script)."""
    parser = argparse.ArgumentParser(prog="moviepolls", description="Movie poll web service")
    parser.add_argument("--log", help="append log output to this file")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    parser.add_argument("--addr", help="listen address, host:port (default :8090)")
    parser.add_argument("--backend", help="data backend: json or sql")
    parser.add_argument("--connection", help="data backend connection string or file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    overrides = {
        "log_file": args.log,
        "log_level": "debug" if args.debug else None,
        "db_backend": args.backend,
        "db_connection": args.connection,
    }
    if args.addr:
        try:
            overrides["host"], overrides["port"] = _parse_addr(args.addr)
        except ValueError as e:
            parser.error(str(e))
    settings = reload_settings(overrides)

    try:
        app = create_app(settings=settings)
    except (OSError, ValueError, MoviePollsError) as e:
        print(f"Unable to start: {e}", file=sys.stderr)
        return 1

    logger.info("Listening on %s", settings.get_bind_address())
    app.run(host=settings.host or "0.0.0.0", port=settings.port, debug=False, threaded=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
