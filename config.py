import os
import logging

from dotenv import load_dotenv

REQUIRED_ENV_VARS = ['CONSUMER_KEY', 'CONSUMER_SECRET', 'PASS_KEY', 'BASE_URL', 'JWT_SECRET']

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def load_config():
    """Read settings from the environment (and a local .env file when present)"""
    load_dotenv()

    return {
        'JWT_SECRET': os.environ.get('JWT_SECRET', ''),
        'JWT_EXPIRES_MINUTES': int(os.environ.get('JWT_EXPIRES_MINUTES', 60)),
        'API_VERSION': os.environ.get('API_VERSION', 'v1'),
        'DATA_DIR': os.environ.get('DATA_DIR', os.path.join(os.path.dirname(os.path.abspath(__file__)), 'data')),
        'DATABASE_URL': os.environ.get('DATABASE_URL'),
        'CORS_ORIGINS': os.environ.get('CORS_ORIGINS', '*'),
        'LOG_LEVEL': os.environ.get('LOG_LEVEL', 'INFO'),
        'ERROR_LOG_FILE': os.environ.get('ERROR_LOG_FILE'),

        # M-Pesa (Daraja)
        'CONSUMER_KEY': os.environ.get('CONSUMER_KEY', ''),
        'CONSUMER_SECRET': os.environ.get('CONSUMER_SECRET', ''),
        'PASS_KEY': os.environ.get('PASS_KEY', ''),
        'MPESA_SHORTCODE': os.environ.get('MPESA_SHORTCODE', '174379'),
        'MPESA_ENV': os.environ.get('MPESA_ENV', 'sandbox'),
        'BASE_URL': os.environ.get('BASE_URL', ''),
        'MPESA_CALLBACK_URL': os.environ.get('MPESA_CALLBACK_URL'),
        'MPESA_ALLOWED_IPS': [ip.strip() for ip in os.environ.get('MPESA_ALLOWED_IPS', '').split(',') if ip.strip()],

        'CLOUDINARY_URL': os.environ.get('CLOUDINARY_URL', ''),

        # Background jobs
        'JOBS_ENABLED': _env_bool('JOBS_ENABLED', True),
        'LOW_STOCK_THRESHOLD': int(os.environ.get('LOW_STOCK_THRESHOLD', 5)),
        'LOW_STOCK_INTERVAL_SECONDS': int(os.environ.get('LOW_STOCK_INTERVAL_SECONDS', 600)),
        'ABANDONED_ORDER_INTERVAL_SECONDS': int(os.environ.get('ABANDONED_ORDER_INTERVAL_SECONDS', 300)),
        'ABANDONED_ORDER_MINUTES': int(os.environ.get('ABANDONED_ORDER_MINUTES', 15)),
        'TIMEZONE': os.environ.get('TIMEZONE', 'Africa/Nairobi'),

        'ADMIN_EMAIL': os.environ.get('ADMIN_EMAIL'),
        'ADMIN_PASSWORD': os.environ.get('ADMIN_PASSWORD'),
        'PORT': int(os.environ.get('PORT', 3000)),
    }


def missing_required(config):
    return [name for name in REQUIRED_ENV_VARS if not config.get(name)]


def configure_logging(config):
    level = getattr(logging, str(config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)

    if not any(getattr(h, '_bakery_pos', False) for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        console._bakery_pos = True
        root.addHandler(console)

        error_log = config.get('ERROR_LOG_FILE')
        if error_log:
            file_handler = logging.FileHandler(error_log)
            file_handler.setLevel(logging.ERROR)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            file_handler._bakery_pos = True
            root.addHandler(file_handler)

    logging.getLogger('werkzeug').setLevel(logging.WARNING)
