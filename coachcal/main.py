from flask import Flask, jsonify
from config.config import config
from coachcal.database import init_db, db_session
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)


def create_app(config_name: str = 'default') -> Flask:
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    init_db()

    from coachcal.routes import availability, bookings, public
    app.register_blueprint(availability.bp, url_prefix='/api/availability')
    app.register_blueprint(bookings.bp, url_prefix='/api/bookings')
    app.register_blueprint(public.bp, url_prefix='/api/public')

    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok'}), 200

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.teardown_appcontext
    def remove_session(exception=None):
        db_session.remove()

    logger.info(f"CoachCal app created with '{config_name}' config")
    return app
