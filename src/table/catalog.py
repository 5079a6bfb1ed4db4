"""Product catalogue lookups.

The real menu lives with the restaurant backend; ``DEMO_MENU`` seeds a small
one so the core and the demo runner work without it.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from db.models import Product

RESTAURANT_ID = "1"

DEMO_MENU = (
    Product("1", "Tofu Frito", "Cebolla con queso fundido", 12.50, "tofu.jpg", "1",
            featured=True, popular=True, badge="TEX MEX"),
    Product("2", "Risotto de Hongos", "Parmesano con hierbas frescas", 18.00,
            "risotto.jpg", "1", featured=True, popular=True),
    Product("3", "Hamburguesa Clásica", "Medallón de carne con salsa especial",
            15.00, "burger.jpg", "1", featured=True, popular=True),
    Product("4", "Bowl Veggie", "Vegetales frescos y quinoa", 14.00, "bowl.jpg", "1",
            popular=True, badge="VEGANO"),
    Product("5", "Salmón a la Parrilla", "Salmón con vegetales asados", 24.00,
            "salmon.jpg", "1", featured=True),
    Product("6", "Pasta Carbonara", "Panceta, huevo y pecorino", 16.00, "pasta.jpg", "1",
            popular=True),
    Product("7", "Cerveza Artesanal", "Rubia de la casa", 7.00, "beer.jpg", "2",
            popular=True, allergens=("gluten",)),
    Product("8", "Limonada Fresca", "Con menta y jengibre", 5.00, "lemonade.jpg", "2",
            popular=True),
    Product("9", "Torta de Chocolate", "Con frutos rojos", 9.00, "cake.jpg", "3",
            featured=True, popular=True, allergens=("gluten", "lactose")),
    Product("10", "Helado", "Dos bochas a elección", 7.00, "icecream.jpg", "3",
            popular=True, allergens=("lactose",)),
)


class Catalog:
    def __init__(self, products: Iterable[Product] = DEMO_MENU) -> None:
        self._products: Dict[str, Product] = {p.id: p for p in products}

    def __len__(self) -> int:
        return len(self._products)

    def get_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(str(product_id))

    def list_products(self, category_id: Optional[str] = None) -> List[Product]:
        products = list(self._products.values())
        if category_id is None:
            return products
        return [p for p in products if p.category_id == category_id]

    def featured(self) -> List[Product]:
        return [p for p in self._products.values() if p.featured]

    def popular(self, limit: Optional[int] = None) -> List[Product]:
        found = [p for p in self._products.values() if p.popular]
        return found if limit is None else found[:limit]
