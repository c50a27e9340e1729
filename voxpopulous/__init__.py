"""Flask application factory."""
from flask import Flask, jsonify, request
from flask_wtf.csrf import CSRFProtect, CSRFError, generate_csrf
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException
from voxpopulous.database import init_db, get_session


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # CSRF protection; the SPA sends the token in the X-CSRFToken header
    csrf = CSRFProtect(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF Error: {e.description}")
        return jsonify({'status': 'error', 'message': 'La session a expiré. Rechargez la page.'}), 400

    # Error tracking in production
    if app.config.get('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=app.config['SENTRY_DSN'],
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=app.config.get('ENV'),
        )

    # Redis cache for the public entitlement payload
    from voxpopulous.services.cache_service import init_cache
    init_cache(app)

    # Prometheus metrics instrumentation
    from voxpopulous.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: trust the reverse proxy headers
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Resolve the request principal from the session cookie
    from voxpopulous.middleware import load_principal

    @app.before_request
    def before_request_handler():
        load_principal()

    # Error Handlers
    from voxpopulous.exceptions import VoxError

    @app.errorhandler(VoxError)
    def handle_vox_error(error):
        """Handle custom application exceptions."""
        get_session().rollback()
        if error.status_code >= 500:
            app.logger.error(f"VoxError [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"VoxError [{error.status_code}] on {request.path}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(OperationalError)
    def handle_database_unavailable(error):
        app.logger.error(f"Database error on {request.path}: {error.orig}")
        get_session().rollback()
        return jsonify({'status': 'error', 'message': 'Service momentanément indisponible'}), 503

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        get_session().rollback()
        return jsonify({'status': 'error', 'message': 'Erreur interne du serveur'}), 500

    @app.route('/api/csrf-token')
    def csrf_token():
        return jsonify({'csrfToken': generate_csrf()})

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    # Register blueprints
    from voxpopulous.blueprints.tenants import tenants_bp
    from voxpopulous.blueprints.tenant_admin import tenant_admin_bp
    from voxpopulous.blueprints.superadmin import superadmin_bp
    from voxpopulous.blueprints.metrics import metrics_bp
    from voxpopulous.blueprints.webhooks import webhooks_bp

    app.register_blueprint(tenants_bp)
    app.register_blueprint(tenant_admin_bp)
    app.register_blueprint(superadmin_bp)
    app.register_blueprint(metrics_bp)

    # Webhooks are authenticated by signature, not by session
    csrf.exempt(webhooks_bp)
    app.register_blueprint(webhooks_bp)

    # Register CLI commands
    from voxpopulous.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
