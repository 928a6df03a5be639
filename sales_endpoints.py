# Sales Endpoints
import logging
from calendar import monthrange
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from flask import jsonify

from auth import token_required
from database import utcnow

logger = logging.getLogger(__name__)

TIMEFRAMES = ('daily', 'weekly', 'monthly')


def _one_month_before(moment):
    year, month = (moment.year, moment.month - 1) if moment.month > 1 else (moment.year - 1, 12)
    day = min(moment.day, monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def timeframe_start(timeframe, tz_name, now=None):
    """UTC start of a reporting window; daily begins at local midnight"""
    now = now or utcnow()
    if timeframe == 'daily':
        local_now = now.astimezone(ZoneInfo(tz_name))
        midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight.astimezone(timezone.utc)
    if timeframe == 'weekly':
        return now - timedelta(days=7)
    if timeframe == 'monthly':
        return _one_month_before(now)
    raise ValueError(f'Unknown timeframe: {timeframe}')


def paid_orders(store, since=None):
    orders = store.find('orders', paymentStatus='paid')
    if since is None:
        return orders
    return [o for o in orders if datetime.fromisoformat(o['createdAt']) >= since]


def sales_by_product(orders, products):
    """Per-product totals priced at the current product price.

    Lines whose product has since been deleted are left out.
    """
    totals = {}
    for order in orders:
        for line in order.get('products', []):
            product = products.get(line['product'])
            if not product:
                continue
            entry = totals.setdefault(product['id'], {
                'productId': product['id'],
                'totalQuantity': 0,
                'totalAmount': 0,
                'orders': set(),
            })
            entry['totalQuantity'] += line['quantity']
            entry['totalAmount'] += product.get('price', 0) * line['quantity']
            entry['orders'].add(order['id'])

    results = []
    for entry in totals.values():
        entry['totalOrders'] = len(entry.pop('orders'))
        results.append(entry)
    return results


def summarize_sales(orders, products):
    """Totals across every product for a set of orders"""
    summary = {'totalQuantity': 0, 'totalAmount': 0, 'totalOrders': 0}
    for order in orders:
        counted = False
        for line in order.get('products', []):
            product = products.get(line['product'])
            if not product:
                continue
            summary['totalQuantity'] += line['quantity']
            summary['totalAmount'] += product.get('price', 0) * line['quantity']
            counted = True
        if counted:
            summary['totalOrders'] += 1
    return summary


def create_sales_routes(app, store):
    prefix = app.config['API_PREFIX']

    def products_by_id():
        return {p['id']: p for p in store.all('products')}

    @app.route(f'{prefix}/sales/total-sales', methods=['GET'])
    @token_required
    def get_total_sales():
        products = products_by_id()
        sales = sales_by_product(paid_orders(store), products)
        if not sales:
            logger.info("No sales found")
            return jsonify({'success': True, 'data': {'totalAmount': 0}})

        for entry in sales:
            product = products[entry['productId']]
            entry['product'] = {'name': product.get('name'), 'category': product.get('category')}
        logger.info("Total sales fetched for %s products", len(sales))
        return jsonify({'success': True, 'data': sales})

    @app.route(f'{prefix}/sales/total-sales/<product_id>', methods=['GET'])
    @token_required
    def get_total_sales_for_product(product_id):
        products = products_by_id()
        sales = [s for s in sales_by_product(paid_orders(store), products) if s['productId'] == product_id]
        if not sales:
            logger.info("No sales found for product %s", product_id)
            return jsonify({'success': True, 'data': {'totalAmount': 0, 'totalQuantity': 0, 'totalOrders': 0}})

        entry = sales[0]
        entry['product'] = products[product_id]
        return jsonify({'success': True, 'data': entry})

    @app.route(f'{prefix}/sales/timeframe/<timeframe>', methods=['GET'])
    @token_required
    def get_sales_by_timeframe(timeframe):
        if timeframe not in TIMEFRAMES:
            return jsonify({'success': False, 'message': 'Timeframe must be one of daily, weekly, monthly'}), 400

        since = timeframe_start(timeframe, app.config['TIMEZONE'])
        summary = summarize_sales(paid_orders(store, since), products_by_id())
        logger.info("Sales for %s: %s", timeframe, summary)
        return jsonify({'success': True, 'data': summary})

    @app.route(f'{prefix}/sales/expenses', methods=['GET'])
    @token_required
    def get_expenses():
        total = sum(item.get('cost', 0) or 0 for item in store.all('store_items'))
        return jsonify({'success': True, 'data': {'totalExpenses': total}})
