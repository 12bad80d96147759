#!/usr/bin/env python3
"""
Lending Ledger Entry Point

Starts the accrual scheduler with settings from the environment (LEDGER_*)
and keeps it running until interrupted.
"""

import sys
import time
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from lending_ledger.config import get_config
from lending_ledger.logging_config import setup_logging
from lending_ledger.system import LedgerSystem


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    print("Starting Lending Ledger accrual scheduler...")
    print(f"Storage: {config.database_url}")
    print(f"Accrual day of month: {config.accrual_day_of_month}")
    print()

    system = LedgerSystem(config)
    try:
        system.start()
        while True:
            time.sleep(60)
    except KeyboardInterrupt:
        print("\nShutting down Lending Ledger...")
    except Exception as e:
        logger.error(f"Scheduler stopped with error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        system.close()
