#!/usr/bin/env python3
"""
Create the document store and, when ADMIN_EMAIL/ADMIN_PASSWORD are set, the first admin account.
"""
import logging
import sys

from auth import ensure_admin
from config import configure_logging, load_config
from database import StoreError, get_store

logger = logging.getLogger('init_db')


def main():
    config = load_config()
    configure_logging(config)
    store = get_store(config)

    try:
        store.init()
        logger.info("Document store initialized")
        if config.get('ADMIN_EMAIL') and config.get('ADMIN_PASSWORD'):
            ensure_admin(store, config['ADMIN_EMAIL'], config['ADMIN_PASSWORD'])
        else:
            logger.info("ADMIN_EMAIL/ADMIN_PASSWORD not set, skipping admin bootstrap")
    except StoreError as e:
        logger.error("Database initialization failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
