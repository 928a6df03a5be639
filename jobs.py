"""
Periodic sweeps: low-stock notifications and abandoned Mpesa orders.
"""
import logging
import threading
import time
from datetime import datetime, timedelta

from database import utcnow
from inventory import release_stock
from notification_endpoints import create_notification

logger = logging.getLogger(__name__)

TIMEOUT_RESULT_DESC = 'Payment timed out - no response received'


def generate_low_stock_notifications(store, threshold):
    """Raise a low_stock notification for each product or store item under threshold.

    Anything that already has an unread low_stock notification is skipped.
    """
    created = []
    with store.locked('notifications'):
        unread = store.find('notifications', type='low_stock', read=False)
        flagged_products = {n.get('productId') for n in unread if n.get('productId')}
        flagged_items = {n.get('storeId') for n in unread if n.get('storeId')}

        for product in store.all('products'):
            if product.get('stock', 0) < threshold and product['id'] not in flagged_products:
                created.append(create_notification(
                    store, 'low_stock', f"Product {product.get('name')} is low on stock.",
                    productId=product['id']))

        for item in store.all('store_items'):
            if item.get('quantity', 0) < threshold and item['id'] not in flagged_items:
                created.append(create_notification(
                    store, 'low_stock', f"Item {item.get('itemName')} is low on stock.",
                    storeId=item['id']))

    if created:
        logger.info("Low stock notifications generated: %s", len(created))
    return created


def expire_abandoned_orders(store, older_than_minutes, now=None):
    """Time out pending Mpesa orders nobody paid for and put their stock back"""
    cutoff = (now or utcnow()) - timedelta(minutes=older_than_minutes)
    expired = []
    with store.locked('orders'):
        for order in store.find('orders', paymentMethod='Mpesa', paymentStatus='pending'):
            if datetime.fromisoformat(order['createdAt']) >= cutoff:
                continue
            order = store.update('orders', order['id'], {
                'paymentStatus': 'timeout',
                'resultDesc': TIMEOUT_RESULT_DESC,
            })
            expired.append(release_stock(store, order))

    if expired:
        logger.info("Marked %s abandoned orders as timed out", len(expired))
    return expired


class BackgroundJobs:
    """Runs registered jobs on their own intervals from a single daemon thread"""

    def __init__(self, tick_seconds=1.0):
        self.tick_seconds = tick_seconds
        self._jobs = []
        self._stop = threading.Event()
        self._thread = None

    def add(self, name, interval_seconds, func):
        self._jobs.append({'name': name, 'interval': interval_seconds, 'func': func,
                           'next_run': time.monotonic() + interval_seconds})

    def run_pending(self, now=None):
        now = time.monotonic() if now is None else now
        for job in self._jobs:
            if now < job['next_run']:
                continue
            job['next_run'] = now + job['interval']
            try:
                job['func']()
            except Exception:
                # A failed run waits for the next interval
                logger.exception("Background job %s failed", job['name'])

    def _loop(self):
        while not self._stop.wait(self.tick_seconds):
            self.run_pending()

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name='background-jobs', daemon=True)
        self._thread.start()
        logger.info("Background jobs started: %s", ', '.join(j['name'] for j in self._jobs))

    def stop(self, timeout=None):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)


def schedule_jobs(store, config):
    jobs = BackgroundJobs()
    jobs.add('low-stock', config['LOW_STOCK_INTERVAL_SECONDS'],
             lambda: generate_low_stock_notifications(store, config['LOW_STOCK_THRESHOLD']))
    jobs.add('abandoned-orders', config['ABANDONED_ORDER_INTERVAL_SECONDS'],
             lambda: expire_abandoned_orders(store, config['ABANDONED_ORDER_MINUTES']))
    return jobs
