"""
Command-line chain check.

    python -m audit_trail.verify_chain --tenant 7 --limit 5000

Prints the verification result as JSON and exits non-zero when the
chain is broken, so it can gate deploys or cron alerts.
"""

import sys

import click

from audit_trail.config import get_settings
from audit_trail.logging_config import configure_logging
from audit_trail.models.base import SessionLocal
from audit_trail.services.chain_verifier import ChainVerifier


@click.command()
@click.option("--tenant", "tenant_id", type=int, default=None,
              help="Tenant to verify (omit for pre-tenant events).")
@click.option("--limit", type=int, default=None, help="Maximum rows to check.")
@click.option("--start-id", type=int, default=None, help="First id to check.")
@click.option("--expected-prev-hash", default=None,
              help="Anchor hash the first row must link to.")
@click.option("--deep", is_flag=True, help="Also recompute every row hash.")
def main(tenant_id, limit, start_id, expected_prev_hash, deep):
    settings = get_settings()
    configure_logging()
    settings.validate()

    db = SessionLocal()
    try:
        result = ChainVerifier(db, settings).verify(
            tenant_id,
            limit=limit,
            start_id=start_id,
            expected_prev_hash=expected_prev_hash,
            deep=deep,
        )
    finally:
        db.close()

    click.echo(result.model_dump_json(indent=2))
    sys.exit(0 if result.ok else 1)


if __name__ == "__main__":
    main()
