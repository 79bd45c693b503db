#!/usr/bin/env python3
"""Supabase database setup script for the dashboard backend.

This script outputs the SQL needed to create all required tables in Supabase.
Copy the SQL output and run it in the Supabase SQL Editor.

Usage:
    # Print all SQL to console
    python scripts/setup_supabase.py

    # Print SQL and save to file
    python scripts/setup_supabase.py --output setup.sql

    # Verify tables exist
    python scripts/setup_supabase.py --verify

Tables Created:
    - deployment_jobs: Deployment job state and history
    - audit_log: Append-only audit trail
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime

from src.audit.store import AUDIT_LOG_TABLE_SQL
from src.jobs.repository import DEPLOYMENT_JOBS_TABLE_SQL

REQUIRED_TABLES = ["deployment_jobs", "audit_log"]

HEADER_SQL = """
-- =============================================================================
-- Terraform Dashboard Database Schema for Supabase
-- =============================================================================
-- Generated: {generated_at}
--
-- Instructions:
-- 1. Open your Supabase project dashboard
-- 2. Go to SQL Editor
-- 3. Paste this entire script
-- 4. Click "Run" to execute
-- =============================================================================
"""

DROP_TABLES_SQL = """
DROP TABLE IF EXISTS audit_log;
DROP TABLE IF EXISTS deployment_jobs;
"""


# =============================================================================
# Verification
# =============================================================================


async def verify_tables() -> dict:
    """Check that every required table exists and is readable."""
    try:
        from supabase import create_client

        from src.config.settings import get_settings

        settings = get_settings()
        if not settings.supabase_enabled:
            return {
                'success': False,
                'error': 'SUPABASE_URL and SUPABASE_KEY must be set',
            }

        supabase = create_client(
            settings.supabase_url,
            settings.supabase_key.get_secret_value(),
        )

        results = {
            'success': True,
            'tables': {},
            'missing': [],
            'errors': [],
        }

        for table in REQUIRED_TABLES:
            try:
                supabase.table(table).select('id').limit(1).execute()
                results['tables'][table] = {'exists': True, 'accessible': True}
            except Exception as e:
                error_str = str(e)
                if 'does not exist' in error_str.lower() or 'relation' in error_str.lower():
                    results['tables'][table] = {'exists': False, 'accessible': False}
                    results['missing'].append(table)
                else:
                    results['tables'][table] = {
                        'exists': 'unknown',
                        'accessible': False,
                        'error': error_str[:100],
                    }
                    results['errors'].append(f"{table}: {error_str[:100]}")
                results['success'] = False

        return results

    except ImportError:
        return {
            'success': False,
            'error': 'Supabase client not installed. Run: pip install supabase',
        }
    except Exception as e:
        return {
            'success': False,
            'error': str(e),
        }


def print_verification_results(results: dict) -> None:
    """Print verification results in a formatted way."""
    print("\n" + "=" * 70)
    print("Supabase Table Verification Results")
    print("=" * 70)

    if 'error' in results:
        print(f"\nError: {results['error']}")
        return

    print(f"\nOverall Status: {'PASS' if results['success'] else 'FAIL'}")
    print("-" * 70)

    print("\nTable Status:")
    for table, info in results.get('tables', {}).items():
        status = "OK" if info.get('exists') is True and info.get('accessible') else "MISSING"
        icon = "[+]" if status == "OK" else "[-]"
        print(f"  {icon} {table}: {status}")
        if info.get('error'):
            print(f"      Error: {info['error']}")

    if results.get('missing'):
        print(f"\nMissing Tables: {', '.join(results['missing'])}")
        print("\nRun this script without --verify to get the SQL to create missing tables.")

    print("\n" + "=" * 70)


# =============================================================================
# Main Functions
# =============================================================================


def get_setup_sql() -> str:
    """Get the complete setup SQL with timestamp."""
    header = HEADER_SQL.format(generated_at=datetime.now().strftime("%Y-%m-%d %H:%M:%S"))
    return "\n".join([header, DEPLOYMENT_JOBS_TABLE_SQL, AUDIT_LOG_TABLE_SQL])


def get_drop_sql() -> str:
    """Get the SQL to drop all tables (use with caution!)."""
    return DROP_TABLES_SQL


def get_sql(sql_type: str = 'setup') -> str:
    if sql_type == 'setup':
        return get_setup_sql()
    if sql_type == 'drop':
        return get_drop_sql()
    raise ValueError(f"Unknown SQL type: {sql_type}")


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the setup script."""
    parser = argparse.ArgumentParser(
        description='Generate Supabase setup SQL for the dashboard backend',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Print setup SQL to console
    python scripts/setup_supabase.py

    # Save setup SQL to file
    python scripts/setup_supabase.py --output setup.sql

    # Verify tables exist in Supabase
    python scripts/setup_supabase.py --verify

    # Print drop SQL (use with caution!)
    python scripts/setup_supabase.py --type drop
        """
    )
    parser.add_argument('--output', '-o', type=str, help='Save SQL to file instead of printing')
    parser.add_argument(
        '--type', '-t',
        type=str,
        choices=['setup', 'drop'],
        default='setup',
        help='Type of SQL to generate (default: setup)'
    )
    parser.add_argument('--verify', '-v', action='store_true', help='Verify that tables exist in Supabase')

    args = parser.parse_args(argv)

    if args.verify:
        import asyncio
        results = asyncio.run(verify_tables())
        print_verification_results(results)
        return 0 if results.get('success') else 1

    sql = get_sql(args.type)
    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            f.write(sql)
        print(f"SQL saved to: {args.output}")
    else:
        if args.type == 'drop':
            print("\n" + "!" * 70)
            print("WARNING: This will DELETE ALL DATA!")
            print("!" * 70 + "\n")
        print(sql)
    return 0


if __name__ == '__main__':
    sys.exit(main())
