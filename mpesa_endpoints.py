# M-Pesa Endpoints
import logging

from flask import jsonify, request

from auth import token_required
from inventory import reapply_stock, release_stock
from mpesa import mask_phone_number, parse_callback

logger = logging.getLogger(__name__)

# A timed-out order can still be paid late
RECONCILABLE_STATUSES = ('pending', 'timeout')


def record_failed_callback(store, description):
    return store.insert('mpesa_transactions', {
        'amount': 0,
        'phoneNumber': 'Unknown',
        'name': 'Unknown',
        'status': 'failed',
        'products': [],
        'order': None,
        'checkoutRequestId': None,
        'resultDesc': description,
    })


def awaiting_payment(order, result):
    """Only an unsettled Mpesa order issued this CheckoutRequestID can take the outcome"""
    if order.get('paymentMethod') != 'Mpesa':
        return False
    if order.get('paymentStatus') not in RECONCILABLE_STATUSES:
        return False
    expected = order.get('mpesaCheckoutRequestID')
    return not expected or expected == result.checkout_request_id


def reconcile_order(store, result):
    """Apply a callback outcome to its order; returns the updated order or None"""
    with store.locked('orders'):
        order = None
        if result.account_reference:
            order = store.get('orders', result.account_reference)
        if order is None and result.checkout_request_id:
            order = store.find_one('orders', mpesaCheckoutRequestID=result.checkout_request_id)
        if order is None:
            logger.warning("No order matches CheckoutRequestID %s", result.checkout_request_id)
            return None
        if not awaiting_payment(order, result):
            logger.warning("Ignoring callback %s for order %s (%s, %s)", result.checkout_request_id,
                           order['id'], order.get('paymentMethod'), order.get('paymentStatus'))
            return None

        previous_status = order.get('paymentStatus')
        order = store.update('orders', order['id'], {
            'paymentStatus': result.order_status,
            'mpesaReceiptNumber': result.receipt_number or order.get('mpesaReceiptNumber'),
            'resultDesc': result.result_desc,
        })
        if result.succeeded:
            if order.get('stockReleased'):
                order = reapply_stock(store, order)
        else:
            order = release_stock(store, order)

    logger.info("Order %s payment status %s -> %s", order['id'], previous_status, order['paymentStatus'])
    return order


def create_mpesa_routes(app, store):
    prefix = app.config['API_PREFIX']

    @app.route(f'{prefix}/mpesa/callback', methods=['POST'])
    def mpesa_callback():
        allowed_ips = app.config.get('MPESA_ALLOWED_IPS') or []
        if allowed_ips and request.remote_addr not in allowed_ips:
            logger.warning("Rejected callback from %s", request.remote_addr)
            return jsonify({'error': 'Unauthorized'}), 403

        body = request.get_json(silent=True)
        if not body:
            logger.error("Empty callback body received")
            record_failed_callback(store, 'Empty callback body received')
            return jsonify({'message': 'Empty callback processed'}), 200

        envelope = body.get('Body') if isinstance(body, dict) else None
        stk_callback = envelope.get('stkCallback') if isinstance(envelope, dict) else None
        if not isinstance(stk_callback, dict):
            logger.error("Invalid callback structure")
            record_failed_callback(store, 'Invalid callback structure')
            return jsonify({'message': 'Invalid callback processed'}), 200

        if not stk_callback.get('CheckoutRequestID'):
            logger.error("Callback missing CheckoutRequestID")
            return jsonify({'error': 'Invalid callback format'}), 400

        result = parse_callback(stk_callback)
        logger.info("Callback for %s: ResultCode %s (%s)", result.checkout_request_id,
                    result.result_code, result.result_desc)

        with store.locked('mpesa_transactions'):
            if store.find_one('mpesa_transactions', checkoutRequestId=result.checkout_request_id):
                logger.info("Transaction %s already processed", result.checkout_request_id)
                return jsonify({'message': 'Transaction already processed'}), 200

            transaction = store.insert('mpesa_transactions', {
                'amount': result.amount,
                'phoneNumber': result.phone_number,
                'name': result.receipt_number or 'Unknown',
                'status': 'success' if result.succeeded else 'failed',
                'products': [],
                'order': None,
                'mpesaReceiptNumber': result.receipt_number,
                'checkoutRequestId': result.checkout_request_id,
                'merchantRequestId': result.merchant_request_id,
                'resultCode': result.result_code,
                'resultDesc': result.result_desc,
                'transactionDate': result.transaction_date,
            })

        if result.succeeded:
            logger.info("Payment of %s from %s, receipt %s", result.amount,
                        mask_phone_number(result.phone_number), result.receipt_number)

        order = reconcile_order(store, result)
        if order:
            store.update('mpesa_transactions', transaction['id'], {
                'order': order['id'],
                'products': order.get('products', []),
            })

        return jsonify({'message': 'Callback processed successfully'}), 200

    @app.route(f'{prefix}/mpesa/transactions', methods=['GET'])
    @token_required
    def get_mpesa_transactions():
        transactions = sorted(store.all('mpesa_transactions'), key=lambda t: t.get('createdAt', ''), reverse=True)
        return jsonify({'success': True, 'data': transactions})
