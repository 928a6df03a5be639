# Product Endpoints
import logging

from flask import jsonify, request

from auth import role_required, token_required
from notification_endpoints import create_notification
from uploads import UploadError, upload_image
from validation import ProductCreate, ProductUpdate, StockUpdate, validate_body, validate_image

logger = logging.getLogger(__name__)


def create_product_routes(app, store):
    prefix = app.config['API_PREFIX']

    @app.route(f'{prefix}/products', methods=['GET'])
    def get_products():
        return jsonify(store.all('products'))

    @app.route(f'{prefix}/products/<product_id>', methods=['GET'])
    def get_product(product_id):
        product = store.get('products', product_id)
        if not product:
            return jsonify({'success': False, 'message': 'Product not found'}), 404
        return jsonify(product)

    @app.route(f'{prefix}/products', methods=['POST'])
    @token_required
    @role_required('admin')
    @validate_body(ProductCreate)
    def add_product():
        image = request.files.get('image')
        error = validate_image(image, required=True)
        if error:
            return jsonify({'success': False, 'message': error}), 400

        try:
            image_url = upload_image(image)
        except UploadError:
            return jsonify({'success': False, 'message': 'Error uploading image'}), 500

        data = request.validated.model_dump()
        data['image'] = image_url
        product = store.insert('products', data)
        logger.info("Product added: %s (%s)", product['name'], product['id'])

        create_notification(store, 'new_product', f"New product added: {product['name']}",
                            productId=product['id'])
        return jsonify({'success': True, 'message': 'Product added successfully', 'product': product}), 201

    @app.route(f'{prefix}/products/<product_id>', methods=['PUT'])
    @token_required
    @role_required('admin')
    @validate_body(ProductUpdate)
    def update_product(product_id):
        if not store.get('products', product_id):
            return jsonify({'success': False, 'message': 'Product not found'}), 404

        changes = request.validated.model_dump(exclude_unset=True)
        image = request.files.get('image')
        error = validate_image(image, required=False)
        if error:
            return jsonify({'success': False, 'message': error}), 400
        if image is not None and image.filename:
            try:
                changes['image'] = upload_image(image)
            except UploadError:
                return jsonify({'success': False, 'message': 'Error uploading image'}), 500

        with store.locked('products'):
            product = store.update('products', product_id, changes)
        if not product:
            return jsonify({'success': False, 'message': 'Product not found'}), 404
        logger.info("Product updated: %s", product_id)
        return jsonify({'success': True, 'message': 'Product updated successfully', 'product': product})

    @app.route(f'{prefix}/products/<product_id>/stock', methods=['PATCH'])
    @token_required
    @validate_body(StockUpdate)
    def update_product_stock(product_id):
        with store.locked('products'):
            product = store.update('products', product_id, {'stock': request.validated.stock})
        if not product:
            return jsonify({'success': False, 'message': 'Product not found'}), 404
        logger.info("Stock for product %s set to %s", product_id, product['stock'])
        return jsonify({'success': True, 'message': 'Stock updated successfully', 'product': product})

    @app.route(f'{prefix}/products/<product_id>', methods=['DELETE'])
    @token_required
    @role_required('admin')
    def delete_product(product_id):
        with store.locked('products'):
            product = store.delete('products', product_id)
        if not product:
            return jsonify({'success': False, 'message': 'Product not found'}), 404
        logger.info("Product deleted: %s", product_id)
        return jsonify({'success': True, 'message': 'Product deleted successfully'})
