# backend/quickshop/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_object=Config, payment_gateway=None) -> Flask:
    """
    Application factory.

    The payment gateway client is injected rather than imported as a module
    global; when none is given, a Midtrans Snap client is built from config.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Model import registers tables on db.metadata for create_all and Alembic
    from . import models  # noqa: F401

    if payment_gateway is None:
        from .services.payment_gateway import MidtransGateway
        payment_gateway = MidtransGateway.from_config(app.config)
    app.extensions["payment_gateway"] = payment_gateway

    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.products import products_bp
    from .routes.cart import cart_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp
    from .routes.admin import admin_bp

    for blueprint in (system_bp, auth_bp, products_bp, cart_bp, orders_bp, payments_bp, admin_bp):
        app.register_blueprint(blueprint)

    allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS", ()))

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
