#!/usr/bin/env python3
"""Salesforce connectivity check using the same credential tiers as the API.

Usage:
    python scripts/check_salesforce.py
    python scripts/check_salesforce.py --settings-file data/salesforce_settings.json
    python scripts/check_salesforce.py --referral-number REF-202501-0007

Checks login and a lookup query against Referral__c. Exit code 0 if all
checks pass, 1 if any fail.
"""

import argparse
import asyncio
import sys
from typing import Tuple

from src.referral_hub.config import get_settings
from src.referral_hub.sync.errors import SyncError
from src.referral_hub.sync.field_mapping import SYNC_TARGETS, build_lookup_soql
from src.referral_hub.sync.salesforce import SalesforceClient
from src.referral_hub.sync.schemas import RecordKind
from src.referral_hub.sync.session import SessionManager
from src.referral_hub.sync.settings_store import SalesforceSettingsStore


async def run_checks(settings_file: str, referral_number: str) -> list[Tuple[str, bool, str]]:
    settings = get_settings()
    store = SalesforceSettingsStore(settings_file or settings.SALESFORCE_SETTINGS_PATH)
    client = SalesforceClient(
        api_version=settings.SALESFORCE_API_VERSION,
        timeout=settings.SALESFORCE_TIMEOUT_SECONDS,
        retry_attempts=1,
    )
    manager = SessionManager(client=client, settings=settings, user_settings=store.load())

    results = []
    credentials = manager.current_credentials()
    results.append((
        "Credentials",
        credentials.is_complete(),
        f"source={credentials.source.value} user={credentials.username or '-'}",
    ))

    session_result = await manager.ensure_session()
    if not session_result.connected:
        results.append(("Login", False, session_result.error or "unknown error"))
        return results
    results.append(("Login", True, session_result.instance_url or ""))

    target = SYNC_TARGETS[RecordKind.REFERRAL]
    try:
        records = await client.query(manager.session, build_lookup_soql(target, referral_number))
    except SyncError as exc:
        results.append(("Lookup query", False, exc.message))
    else:
        results.append(("Lookup query", True, f"{len(records)} match(es) for {referral_number}"))

    await manager.disconnect()
    return results


def print_results(results: list) -> None:
    """Print a formatted table of check results."""
    header = f"{'CHECK':<25} {'STATUS':<10} {'DETAIL'}"
    separator = "-" * 70
    print()
    print(separator)
    print(header)
    print(separator)
    for name, passed, detail in results:
        status = "PASS" if passed else "FAIL"
        print(f"{name:<25} {status:<10} {detail}")
    print(separator)
    print()


def main() -> None:
    parser = argparse.ArgumentParser(description="Check Salesforce connectivity for record sync")
    parser.add_argument(
        "--settings-file",
        default="",
        help="Saved settings JSON (defaults to SALESFORCE_SETTINGS_PATH)",
    )
    parser.add_argument(
        "--referral-number",
        default="REF-000000-0000",
        help="Business key to look up",
    )
    args = parser.parse_args()

    results = asyncio.run(run_checks(args.settings_file, args.referral_number))
    print_results(results)

    all_passed = all(passed for _, passed, _ in results)
    print("All checks passed." if all_passed else "Some checks FAILED.")
    sys.exit(0 if all_passed else 1)


if __name__ == "__main__":
    main()
