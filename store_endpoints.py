# Raw-material Store Endpoints
import logging

from flask import jsonify, request

from auth import role_required, token_required
from database import utcnow
from validation import QuantityUpdate, StoreItemCreate, StoreItemUpdate, TransferRequest, validate_body

logger = logging.getLogger(__name__)

RECENT_TRANSFERS_LIMIT = 3


def create_store_routes(app, store):
    prefix = app.config['API_PREFIX']

    @app.route(f'{prefix}/stores', methods=['GET'])
    @token_required
    def get_store_items():
        return jsonify(store.all('store_items'))

    @app.route(f'{prefix}/stores/transfers/recent', methods=['GET'])
    @token_required
    def get_recent_transfers():
        transfers = sorted(store.all('transfers'), key=lambda t: t.get('transferredAt', ''), reverse=True)
        return jsonify({'success': True, 'data': transfers[:RECENT_TRANSFERS_LIMIT]})

    @app.route(f'{prefix}/stores/<item_id>', methods=['GET'])
    @token_required
    def get_store_item(item_id):
        item = store.get('store_items', item_id)
        if not item:
            return jsonify({'success': False, 'message': 'Item not found'}), 404
        return jsonify(item)

    @app.route(f'{prefix}/stores', methods=['POST'])
    @token_required
    @validate_body(StoreItemCreate)
    def add_store_item():
        item = store.insert('store_items', request.validated.model_dump())
        logger.info("Store item added: %s", item['itemName'])
        return jsonify({'success': True, 'data': item}), 201

    @app.route(f'{prefix}/stores/<item_id>', methods=['PUT'])
    @token_required
    @validate_body(StoreItemUpdate)
    def update_store_item(item_id):
        with store.locked('store_items'):
            item = store.update('store_items', item_id, request.validated.model_dump(exclude_unset=True))
        if not item:
            return jsonify({'success': False, 'message': 'Item not found'}), 404
        return jsonify({'success': True, 'data': item})

    @app.route(f'{prefix}/stores/<item_id>/quantity', methods=['PATCH'])
    @token_required
    @validate_body(QuantityUpdate)
    def update_store_item_quantity(item_id):
        with store.locked('store_items'):
            item = store.update('store_items', item_id, {'quantity': request.validated.quantity})
        if not item:
            return jsonify({'success': False, 'message': 'Item not found'}), 404
        return jsonify({'success': True, 'data': item})

    @app.route(f'{prefix}/stores/<item_id>', methods=['DELETE'])
    @token_required
    @role_required('admin')
    def delete_store_item(item_id):
        with store.locked('store_items'):
            item = store.delete('store_items', item_id)
        if not item:
            return jsonify({'success': False, 'message': 'Item not found'}), 404
        logger.info("Store item deleted: %s", item_id)
        return jsonify({'success': True, 'message': 'Item deleted successfully'})

    @app.route(f'{prefix}/stores/<item_id>/transfer', methods=['POST'])
    @token_required
    @validate_body(TransferRequest)
    def transfer_store_item(item_id):
        body = request.validated
        with store.locked('store_items'):
            item = store.get('store_items', item_id)
            if not item:
                return jsonify({'success': False, 'message': 'Item not found'}), 404
            if item.get('quantity', 0) < body.quantity:
                return jsonify({'success': False, 'message': 'Insufficient quantity in store'}), 400

            transfer = store.insert('transfers', {
                'itemId': item['id'],
                'itemName': item['itemName'],
                'quantity': body.quantity,
                'unit': item.get('unit'),
                'destination': body.destination,
                'transferredAt': utcnow().isoformat(),
                'transferredBy': request.user.get('email') or request.user.get('name'),
            })
            item = store.update('store_items', item_id, {'quantity': item['quantity'] - body.quantity})

        logger.info("Transferred %s %s of %s to %s", body.quantity, item.get('unit'), item['itemName'],
                    body.destination)
        return jsonify({'success': True, 'data': {'item': item, 'transfer': transfer}})
