"""
Product store: one JSON file per product, named ``<product_id>.json``.

There is no cache; every read and write goes straight to disk. Writes never
create products, those are provisioned out-of-band.
"""

import json
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional

from pydantic import ValidationError

from checkout_backend.errors import NotFound, StorageError
from checkout_backend.logs import log_json
from checkout_backend.models import Product


class ProductStore:
    def __init__(self, products_dir: Path):
        self.products_dir = Path(products_dir)
        # product_id -> lock serializing read-modify-write on that file
        self._locks: Dict[str, threading.RLock] = {}
        self._lock_manager_lock = threading.Lock()

    def _path(self, product_id: str) -> Path:
        # Ids that cannot name a file inside products_dir have no record
        if (not product_id or product_id.startswith('.')
                or any(sep in product_id for sep in ('/', '\\', '\x00'))):
            raise NotFound(
                "Product not found",
                f"Product file {product_id}.json does not exist",
            )
        return self.products_dir / f"{product_id}.json"

    def _get_lock(self, product_id: str) -> threading.RLock:
        with self._lock_manager_lock:
            if product_id not in self._locks:
                self._locks[product_id] = threading.RLock()
            return self._locks[product_id]

    @contextmanager
    def product_lock(self, product_id: str) -> Iterator[None]:
        """Hold the per-product lock for the duration of the block."""
        with self._get_lock(product_id):
            yield

    def read(self, product_id: str) -> Product:
        path = self._path(product_id)
        try:
            raw = path.read_text(encoding='utf-8')
        except FileNotFoundError:
            raise NotFound(
                "Product not found",
                f"Product file {product_id}.json does not exist",
            )
        except OSError as e:
            raise StorageError("Error loading product info", str(e)) from e

        try:
            return Product.model_validate_json(raw)
        except ValidationError as e:
            raise StorageError(
                "Error loading product info",
                f"Product file {product_id}.json is malformed: {e.error_count()} error(s)",
            ) from e

    def write(self, product_id: str, product: Product) -> None:
        path = self._path(product_id)
        if not path.is_file():
            raise NotFound(
                "Product not found",
                f"Product file {product_id}.json does not exist",
            )

        payload = json.dumps(product.model_dump(), indent=2)
        tmp_name: Optional[str] = None
        try:
            with tempfile.NamedTemporaryFile(
                'w', encoding='utf-8', dir=self.products_dir,
                prefix=f".{product_id}.", suffix='.tmp', delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError("Error saving product", str(e)) from e

        log_json("INFO", "Product record written",
                 product_id=product_id, stock=product.stock)

    def update(self, product_id: str, mutate: Callable[[Product], Product]) -> Product:
        """Read, mutate and write back a product under its lock."""
        with self.product_lock(product_id):
            current = self.read(product_id)
            updated = mutate(current)
            self.write(product_id, updated)
            return updated
