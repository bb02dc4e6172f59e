"""Routes package: Blueprint registration for the HTTP surface.

Each blueprint module defines a `bp` variable. This module provides
register_blueprints() which imports and registers all of them.
"""


def register_blueprints(app):
    """Import and register all blueprints on the Flask app."""
    from routes.movies import bp as movies_bp
    from routes.users import bp as users_bp
    from routes.oauth import bp as oauth_bp
    from routes.admin import bp as admin_bp

    for blueprint in [
        movies_bp,
        users_bp,
        oauth_bp,
        admin_bp,
    ]:
        app.register_blueprint(blueprint)
