"""
Seed Pending Payments — insere pedidos de demonstração aguardando pagamento.

Útil para testar o matching localmente com screenshots reais de
GCash / Maya / Maybank / Touch 'n Go.

Usage:
    python -m scripts.seed_pending_payments [--database sqlite:///payproof.db]
"""
import argparse
import logging
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from payproof.config.settings import get_settings
from payproof.infrastructure.db.database import Database
from payproof.infrastructure.db.models import PendingPaymentRecord, utcnow
from payproof.infrastructure.orders.sql_order_store import SqlOrderStore

logger = logging.getLogger(__name__)

DEMO_PAYMENTS = [
    # (id, reference, amount, currency, buyer, methods, hours_ago)
    ("order-ph-001", "BP2024-001", "1200.00", "PHP", "Juan Dela Cruz", ["gcash", "maya"], 2),
    ("order-ph-002", "BP2024-002", "800.00", "PHP", "Maria Santos", ["gcash"], 5),
    ("order-ph-003", "BP2024-003", "2499.50", "PHP", "Jose Rizal", ["bpi", "bdo"], 26),
    ("order-my-001", "MY-778812", "150.00", "MYR", "Ahmad Ibrahim", ["maybank", "touch_n_go"], 3),
    ("order-my-002", "MY-778813", "89.90", "MYR", "Siti Aminah", ["touch_n_go", "boost"], 30),
]


def main():
    parser = argparse.ArgumentParser(description="Seed demo pending payments")
    parser.add_argument("--database", help="Override DATABASE_URL")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    db = Database(args.database or get_settings().database_url)
    db.init_db()
    orders = SqlOrderStore(db)
    now = utcnow()

    created = 0
    for candidate_id, reference, amount, currency, buyer, methods, hours_ago in DEMO_PAYMENTS:
        with db.session() as s:
            if s.get(PendingPaymentRecord, candidate_id) is not None:
                logger.info(f"{candidate_id} already exists, skipping")
                continue
        orders.add_pending(
            candidate_id,
            reference=reference,
            expected_amount=Decimal(amount),
            currency=currency,
            buyer_identity=buyer,
            payment_methods=methods,
            created_at=now - timedelta(hours=hours_ago),
        )
        created += 1
        print(f"  ✅ {candidate_id:<14} {currency} {amount:>10}  ref={reference}")

    print(f"\nSeeded {created} pending payments ({len(DEMO_PAYMENTS) - created} already present)")
    db.dispose()


if __name__ == "__main__":
    main()
