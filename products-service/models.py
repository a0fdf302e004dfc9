import threading
from typing import Iterable, List, Optional
from pydantic import BaseModel


class Product(BaseModel):
    name: str
    price: float


class ProductNotFound(LookupError):
    """Raised when an identifier falls outside the current collection."""

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} doesn't exist")
        self.product_id = product_id


class ProductStore:
    """
    Liste ordonnée de produits protégée par un seul verrou.

    The position of a product in the list is its identifier, so deleting a
    product moves the last one into the freed slot and identifiers shift.
    Every method copies what it returns while still holding the lock.
    """

    def __init__(self, products: Optional[Iterable[Product]] = None):
        self._lock = threading.Lock()
        self._products: List[Product] = [p.model_copy() for p in products or []]

    def __len__(self) -> int:
        with self._lock:
            return len(self._products)

    def _check(self, product_id: int):
        if product_id < 0 or product_id >= len(self._products):
            raise ProductNotFound(product_id)

    def list_all(self) -> List[Product]:
        with self._lock:
            return [p.model_copy() for p in self._products]

    def get(self, product_id: int) -> Product:
        with self._lock:
            self._check(product_id)
            return self._products[product_id].model_copy()

    def append(self, product: Product) -> Product:
        with self._lock:
            self._products.append(product.model_copy())
            return product.model_copy()

    def merge(self, product_id: int, name: str = "", price: float = 0.0) -> Product:
        """
        Partial update: an empty name or a price of exactly 0.0 means the
        field was not supplied, so a price can never be reset to zero here.
        """
        with self._lock:
            self._check(product_id)
            stored = self._products[product_id]
            if name != "":
                stored.name = name
            if price != 0.0:
                stored.price = price
            return stored.model_copy()

    def delete(self, product_id: int) -> None:
        with self._lock:
            self._check(product_id)
            last = len(self._products) - 1
            if product_id < last:
                self._products[product_id], self._products[last] = (
                    self._products[last],
                    self._products[product_id],
                )
            self._products.pop()


# Stockage en mémoire (exemple)
SEED_PRODUCTS: List[Product] = [
    Product(name="Shoes", price=25.00),
    Product(name="Short", price=10.00),
    Product(name="Cam", price=40.00),
    Product(name="Mouse", price=30.00),
    Product(name="WebCam", price=20.00),
]


def seeded_store() -> ProductStore:
    return ProductStore(SEED_PRODUCTS)
