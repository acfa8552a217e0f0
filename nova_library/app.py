"""NOVA Library - Flask Application.

Catalog browsing, keyword search and lending tracking over SQLite.
"""
import atexit
import logging
from datetime import date
from typing import Callable, Optional

from flask import Flask, jsonify, render_template, request

from nova_library.config.config import Config
from nova_library.models.database import close_db, get_db, init_db
from nova_library.models.statistics import StatisticsRefresher
from nova_library.routes import api_bp, main_bp
from nova_library.scheduled_tasks import scheduler, shutdown_scheduler, start_scheduler

logger = logging.getLogger(__name__)


def create_app(config_class=Config, clock: Optional[Callable[[], date]] = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        config_class: Configuration object loaded into ``app.config``.
        clock: Source of today's date for lending rules. Defaults to
            ``date.today``.

    Returns:
        The configured application.
    """
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(level=app.config.get('LOG_LEVEL', 'INFO'))

    app.teardown_appcontext(close_db)

    # Initialize database
    with app.app_context():
        init_db(get_db(), load_sample_data=app.config['LOAD_SAMPLE_DATA'])

    background = app.config['STATS_REFRESH_MODE'] == 'background'
    app.extensions['nova_library'] = {
        'refresher': StatisticsRefresher(scheduler if background else None),
        'clock': clock,
    }

    app.register_blueprint(main_bp)
    app.register_blueprint(api_bp, url_prefix='/api')

    # Start background tasks
    if app.config['START_SCHEDULER']:
        start_scheduler(app)
        atexit.register(shutdown_scheduler)

    @app.errorhandler(401)
    def unauthorized(error):
        if request.path.startswith('/api/'):
            return jsonify({'success': False, 'message': 'Login required', 'data': []}), 401
        return render_template('errors/401.html'), 401

    @app.errorhandler(404)
    def not_found(error):
        if request.path.startswith('/api/'):
            return jsonify({'success': False, 'message': 'Not found', 'data': []}), 404
        return render_template('errors/404.html'), 404

    logger.info(f"NOVA Library started with database {app.config['DATABASE_PATH']}")
    return app


if __name__ == '__main__':
    create_app().run(debug=True)
