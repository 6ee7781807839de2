"""Environment-derived configuration."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List


def _split_csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(',') if part.strip()]


@dataclass(frozen=True)
class Settings:
    port: int = 3001
    success_url: str = 'http://localhost:3000/success'
    cancel_url: str = 'http://localhost:3000/cancel'
    stripe_secret_key: str = ''
    stripe_webhook_secret: str = ''
    stripe_timeout_seconds: float = 10.0
    payment_method_types: List[str] = field(default_factory=lambda: ['card', 'paypal'])
    products_dir: Path = Path('products')
    data_dir: Path = Path('data')

    @classmethod
    def from_env(cls) -> 'Settings':
        return cls(
            port=int(os.getenv('APP_PORT', '3001')),
            success_url=os.getenv('SUCCESS_URL', 'http://localhost:3000/success'),
            cancel_url=os.getenv('CANCEL_URL', 'http://localhost:3000/cancel'),
            stripe_secret_key=os.getenv('STRIPE_SECRET_KEY', ''),
            stripe_webhook_secret=os.getenv('STRIPE_WEBHOOK_SECRET', ''),
            stripe_timeout_seconds=float(os.getenv('STRIPE_TIMEOUT_SECONDS', '10')),
            payment_method_types=_split_csv(os.getenv('PAYMENT_METHOD_TYPES', 'card,paypal')),
            products_dir=Path(os.getenv('PRODUCTS_DIR', 'products')),
            data_dir=Path(os.getenv('DATA_DIR', 'data')),
        )

    @property
    def ledger_path(self) -> Path:
        return self.data_dir / 'processed_sessions.jsonl'

    @property
    def dead_letter_path(self) -> Path:
        return self.data_dir / 'failed_reconciliations.jsonl'
