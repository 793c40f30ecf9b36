"""
Истечение просроченных платёжных транзакций (заказ -> cancelled, ваучер и остатки возвращаются)
Запуск: python -m app.scripts.expire_payments [--loop SECONDS]
"""
import argparse
import logging
import time
from sqlmodel import Session
from app.core.errors import TransientIOError
from app.core.logging import setup_logging
from app.db.session import engine
from app.services.payments import sweep_expired_transactions

logger = logging.getLogger("app.scripts.expire_payments")


def run_once() -> int:
    with Session(engine) as session:
        return sweep_expired_transactions(session)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Expire payment transactions past their window")
    parser.add_argument("--loop", type=float, metavar="SECONDS", help="repeat every SECONDS")
    args = parser.parse_args(argv)

    setup_logging()

    while True:
        try:
            expired = run_once()
            logger.info(f"Sweep finished, {expired} transactions expired")
        except TransientIOError as e:
            logger.warning(f"Sweep skipped: {e.message}")
        if not args.loop:
            break
        time.sleep(args.loop)


if __name__ == "__main__":
    main()
