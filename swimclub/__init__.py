import os
from flask import Flask


def create_app():
    """Build the swim club results API.

    Results, splits and relay teams live in PostgreSQL only, so
    ``DATABASE_URL`` must point at the club database.
    """
    app = Flask(__name__)

    if not os.environ.get("DATABASE_URL"):
        raise RuntimeError(
            "DATABASE_URL is required. Set it to the PostgreSQL URL of the club results database."
        )

    from . import datastore_pg as _pg
    minconn = _pg._env_int("DB_POOL_MIN", 1)
    maxconn = _pg._env_int("DB_POOL_MAX", 10)
    try:
        _pg.init_pool(minconn=minconn, maxconn=maxconn)
    except Exception:  # pragma: no cover
        app.logger.exception(
            "Connection pool for results database failed (min=%s max=%s); using direct connections",
            minconn, maxconn,
        )

    from . import routes
    app.register_blueprint(routes.bp)

    # Relay entry times need the race table; load it once up front
    try:
        lookup = routes._race_lookup()
        app.logger.info("race_lookup_loaded entries=%s", len(lookup))
    except Exception:  # pylint: disable=broad-except
        app.logger.exception("Could not preload race lookup; it will load on first relay request")

    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
