import logging
import sys
from datetime import datetime

from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from auth_endpoints import create_auth_routes
from config import configure_logging, load_config, missing_required
from database import get_store
from jobs import schedule_jobs
from mpesa import MpesaClient
from mpesa_endpoints import create_mpesa_routes
from notification_endpoints import create_notification_routes
from order_endpoints import create_order_routes
from product_endpoints import create_product_routes
from sales_endpoints import create_sales_routes
from store_endpoints import create_store_routes
from uploads import configure_cloudinary

logger = logging.getLogger(__name__)

VERSION = '1.0.0'

# Uploads over 5MB are rejected with a readable message before this hard cap
MAX_CONTENT_LENGTH = 10 * 1024 * 1024


def create_app(config=None, store=None, mpesa_client=None):
    settings = load_config()
    if config:
        settings.update(config)
    configure_logging(settings)

    app = Flask(__name__)
    app.config.update(settings)
    app.config['API_PREFIX'] = f"/api/{settings['API_VERSION']}"
    app.config['MAX_CONTENT_LENGTH'] = MAX_CONTENT_LENGTH
    app.json.sort_keys = False

    origins = settings.get('CORS_ORIGINS') or '*'
    if origins != '*':
        origins = [o.strip() for o in origins.split(',') if o.strip()]
    CORS(app,
         resources={r"/api/*": {"origins": origins}},
         methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS'],
         allow_headers=['Content-Type', 'Authorization', 'X-Requested-With', 'Accept'])

    if store is None:
        store = get_store(settings)
    store.init()
    if mpesa_client is None:
        mpesa_client = MpesaClient(settings)
    configure_cloudinary(settings)

    app.extensions['document_store'] = store
    app.extensions['mpesa_client'] = mpesa_client

    create_auth_routes(app, store)
    create_product_routes(app, store)
    create_store_routes(app, store)
    create_order_routes(app, store, mpesa_client)
    create_sales_routes(app, store)
    create_notification_routes(app, store)
    create_mpesa_routes(app, store)

    @app.after_request
    def log_request(response):
        logger.info('%s %s %s %s - %s "%s"', request.method, request.path, response.status_code,
                    response.calculate_content_length() or 0, request.remote_addr,
                    request.headers.get('User-Agent', ''))
        return response

    @app.route('/api/health', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'version': VERSION
        })

    @app.route('/api/', methods=['GET'])
    def api_root():
        prefix = app.config['API_PREFIX']
        return jsonify({
            'message': f'Bakery POS API {VERSION}',
            'endpoints': {
                'auth': [f'{prefix}/auth/register', f'{prefix}/auth/login', f'{prefix}/auth/profile'],
                'products': [f'{prefix}/products', f'{prefix}/products/<id>', f'{prefix}/products/<id>/stock'],
                'stores': [f'{prefix}/stores', f'{prefix}/stores/<id>', f'{prefix}/stores/transfers/recent'],
                'orders': [f'{prefix}/orders', f'{prefix}/orders/paid', f'{prefix}/orders/<id>'],
                'sales': [f'{prefix}/sales/total-sales', f'{prefix}/sales/timeframe/<timeframe>',
                          f'{prefix}/sales/expenses'],
                'notifications': [f'{prefix}/notifications', f'{prefix}/notifications/unread'],
                'mpesa': [f'{prefix}/mpesa/callback', f'{prefix}/mpesa/transactions'],
            }
        })

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'message': 'Endpoint not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'success': False, 'message': 'Method not allowed'}), 405

    @app.errorhandler(Exception)
    def internal_error(error):
        if isinstance(error, HTTPException):
            return jsonify({'success': False, 'message': error.description}), error.code
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({'success': False, 'message': 'Internal server error'}), 500

    return app


if __name__ == '__main__':
    config = load_config()
    configure_logging(config)

    missing = missing_required(config)
    if missing:
        for name in missing:
            logger.error("Missing required environment variable: %s", name)
        sys.exit(1)

    app = create_app(config)
    if config['JOBS_ENABLED']:
        schedule_jobs(app.extensions['document_store'], config).start()

    logger.info("Starting Bakery POS API on port %s", config['PORT'])
    app.run(host='0.0.0.0', port=config['PORT'])
