# Order Endpoints
import logging

from flask import jsonify, request

from auth import token_required
from inventory import InsufficientStock, ProductNotFound, populate_orders, release_stock, reserve_stock
from mpesa import MpesaError, mask_phone_number
from notification_endpoints import create_notification
from validation import OrderCreate, OrderUpdate, is_valid_phone, validate_body

logger = logging.getLogger(__name__)

INVALID_PHONE_MESSAGE = 'A valid phone number (format: 2547XXXXXXXX) is required for Mpesa payment'


def _newest_first(orders):
    return sorted(orders, key=lambda o: o.get('createdAt', ''), reverse=True)


def create_order_routes(app, store, mpesa_client):
    prefix = app.config['API_PREFIX']

    @app.route(f'{prefix}/orders', methods=['GET'])
    @token_required
    def get_orders():
        orders = populate_orders(store, _newest_first(store.all('orders')))
        return jsonify({'success': True, 'data': orders})

    @app.route(f'{prefix}/orders/paid', methods=['GET'])
    @token_required
    def get_paid_orders():
        orders = populate_orders(store, _newest_first(store.find('orders', paymentStatus='paid')))
        return jsonify({'success': True, 'count': len(orders), 'data': orders})

    @app.route(f'{prefix}/orders/<order_id>', methods=['GET'])
    @token_required
    def get_order(order_id):
        order = store.get('orders', order_id)
        if not order:
            return jsonify({'success': False, 'message': 'Order not found'}), 404
        return jsonify({'success': True, 'data': populate_orders(store, [order])[0]})

    @app.route(f'{prefix}/orders', methods=['POST'])
    @token_required
    @validate_body(OrderCreate)
    def create_order():
        body = request.validated
        is_mpesa = body.paymentMethod == 'Mpesa'

        if is_mpesa and not is_valid_phone(body.phoneNumber):
            logger.warning("Rejected Mpesa order with phone %s", mask_phone_number(body.phoneNumber))
            return jsonify({'success': False, 'message': INVALID_PHONE_MESSAGE}), 400

        lines = [line.model_dump() for line in body.products]
        try:
            reserve_stock(store, lines)
        except ProductNotFound as e:
            return jsonify({'success': False, 'message': str(e)}), 400
        except InsufficientStock:
            return jsonify({'success': False, 'message': 'Insufficient stock for product'}), 400

        order = store.insert('orders', {
            'user': body.user or request.user.get('id'),
            'products': lines,
            'totalAmount': body.totalAmount,
            'paymentMethod': body.paymentMethod,
            'paymentStatus': 'pending' if is_mpesa else 'paid',
            'phoneNumber': body.phoneNumber,
            'stockReleased': False,
        })
        logger.info("Order %s created (%s, %s)", order['id'], order['paymentMethod'], order['totalAmount'])

        if is_mpesa:
            try:
                ack = mpesa_client.stk_push(body.totalAmount, body.phoneNumber, order['id'], 'Order Payment')
            except MpesaError as e:
                logger.error("Mpesa payment for order %s failed to start: %s", order['id'], e)
                with store.locked('orders'):
                    order = store.update('orders', order['id'], {'paymentStatus': 'failed', 'resultDesc': str(e)})
                    release_stock(store, order)
                return jsonify({'success': False, 'message': 'Failed to initiate Mpesa payment'}), 502

            with store.locked('orders'):
                order = store.update('orders', order['id'], {
                    'mpesaCheckoutRequestID': ack.get('CheckoutRequestID'),
                    'mpesaMerchantRequestID': ack.get('MerchantRequestID'),
                })

        create_notification(store, 'order_received',
                            f"New order received: {order['totalAmount']} via {order['paymentMethod']}",
                            orderId=order['id'])
        return jsonify({'success': True, 'data': order}), 201

    @app.route(f'{prefix}/orders/<order_id>', methods=['PUT'])
    @token_required
    @validate_body(OrderUpdate)
    def update_order(order_id):
        changes = request.validated.model_dump(exclude_unset=True)
        with store.locked('orders'):
            order = store.update('orders', order_id, changes)
        if not order:
            return jsonify({'success': False, 'message': 'Order not found'}), 404
        return jsonify({'success': True, 'data': order})

    @app.route(f'{prefix}/orders/<order_id>', methods=['DELETE'])
    @token_required
    def delete_order(order_id):
        with store.locked('orders'):
            order = store.get('orders', order_id)
            if not order:
                return jsonify({'success': False, 'message': 'Order not found'}), 404
            if order.get('paymentStatus') != 'paid':
                release_stock(store, order)
            store.delete('orders', order_id)
        logger.info("Order deleted: %s", order_id)
        return jsonify({'success': True, 'message': 'Order deleted successfully'})
