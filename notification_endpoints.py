# Notification Endpoints
import logging

from flask import jsonify, request

from auth import token_required
from validation import MarkAsReadRequest, validate_body

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ('low_stock', 'new_product', 'order_received')


def create_notification(store, notification_type, message, productId=None, storeId=None, orderId=None):
    if notification_type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {notification_type}")
    notification = store.insert('notifications', {
        'type': notification_type,
        'message': message,
        'productId': productId,
        'storeId': storeId,
        'orderId': orderId,
        'read': False,
    })
    logger.info("Notification created: %s", message)
    return notification


def populate_notifications(store, notifications):
    products = {p['id']: p for p in store.all('products')}
    items = {i['id']: i for i in store.all('store_items')}
    populated = []
    for n in notifications:
        copy = dict(n)
        copy['productId'] = products.get(n.get('productId')) if n.get('productId') else None
        copy['storeId'] = items.get(n.get('storeId')) if n.get('storeId') else None
        populated.append(copy)
    return populated


def create_notification_routes(app, store):
    prefix = app.config['API_PREFIX']

    def mark_as_read(notification_id):
        with store.locked('notifications'):
            notification = store.update('notifications', notification_id, {'read': True})
        if not notification:
            return jsonify({'success': False, 'message': 'Notification not found'}), 404
        return jsonify({'success': True, 'message': 'Notification marked as read', 'data': notification})

    @app.route(f'{prefix}/notifications', methods=['GET'])
    @token_required
    def get_notifications():
        notifications = sorted(store.all('notifications'), key=lambda n: n.get('createdAt', ''), reverse=True)
        return jsonify({'success': True, 'data': notifications})

    @app.route(f'{prefix}/notifications/unread', methods=['GET'])
    @token_required
    def get_unread_notifications():
        unread = sorted(store.find('notifications', read=False), key=lambda n: n.get('createdAt', ''), reverse=True)
        return jsonify({'success': True, 'data': populate_notifications(store, unread)})

    @app.route(f'{prefix}/notifications/<notification_id>/mark-as-read', methods=['POST'])
    @token_required
    def mark_notification_as_read(notification_id):
        return mark_as_read(notification_id)

    @app.route(f'{prefix}/notifications/mark-as-read', methods=['POST'])
    @token_required
    @validate_body(MarkAsReadRequest)
    def mark_notification_as_read_by_body():
        return mark_as_read(request.validated.id)
