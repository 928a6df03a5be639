import logging

logger = logging.getLogger(__name__)


class ProductNotFound(Exception):
    def __init__(self, product_id):
        super().__init__(f'Product with ID {product_id} not found')
        self.product_id = product_id


class InsufficientStock(Exception):
    def __init__(self, product, requested):
        super().__init__(f"Insufficient stock for product {product.get('name')}")
        self.product = product
        self.requested = requested


def _quantities_by_product(lines):
    needed = {}
    for line in lines:
        needed[line['product']] = needed.get(line['product'], 0) + int(line['quantity'])
    return needed


def reserve_stock(store, lines):
    """Check every order line against stock, then deduct all of them.

    Nothing is written unless every product exists and has enough stock.
    """
    needed = _quantities_by_product(lines)
    with store.locked('products'):
        products = {}
        for product_id, quantity in needed.items():
            product = store.get('products', product_id)
            if not product:
                logger.warning("Product with ID %s not found", product_id)
                raise ProductNotFound(product_id)
            if quantity > product.get('stock', 0):
                logger.warning("Insufficient stock for product %s: requested %s, available %s",
                               product_id, quantity, product.get('stock', 0))
                raise InsufficientStock(product, quantity)
            products[product_id] = product

        for product_id, quantity in needed.items():
            store.update('products', product_id, {'stock': products[product_id].get('stock', 0) - quantity})


def release_stock(store, order):
    """Return an unpaid order's quantities to stock; safe to call more than once"""
    if order.get('stockReleased'):
        return order

    with store.locked('products'):
        for product_id, quantity in _quantities_by_product(order.get('products', [])).items():
            product = store.get('products', product_id)
            if not product:
                logger.warning("Cannot restock deleted product %s for order %s", product_id, order['id'])
                continue
            store.update('products', product_id, {'stock': product.get('stock', 0) + quantity})

    logger.info("Released stock held by order %s", order['id'])
    return store.update('orders', order['id'], {'stockReleased': True})


def reapply_stock(store, order):
    """Deduct stock again for an order paid after its reservation was released"""
    with store.locked('products'):
        for product_id, quantity in _quantities_by_product(order.get('products', [])).items():
            product = store.get('products', product_id)
            if not product:
                continue
            remaining = product.get('stock', 0) - quantity
            if remaining < 0:
                logger.warning("Late payment for order %s oversold product %s by %s",
                               order['id'], product_id, -remaining)
                remaining = 0
            store.update('products', product_id, {'stock': remaining})

    return store.update('orders', order['id'], {'stockReleased': False})


def populate_orders(store, orders):
    """Replace product ids in order lines with the product documents (None when deleted)"""
    products = {p['id']: p for p in store.all('products')}
    populated = []
    for order in orders:
        copy = dict(order)
        copy['products'] = [
            {**line, 'product': products.get(line['product'])}
            for line in order.get('products', [])
        ]
        populated.append(copy)
    return populated
