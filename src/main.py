"""
Main batch runner for the CalCareers job scrapers.

Runs the registered ingestion jobs sequentially or individually, with options
for test runs and detailed progress tracking.
"""

import sys
import logging
from datetime import datetime
from pathlib import Path
import time
from typing import Dict, List, Optional

LOG_DIR = Path(__file__).parent.parent / "logs"
log_file = LOG_DIR / f"batch_run_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

logger = logging.getLogger(__name__)

# Scraper modules. 'kwargs' are IngestionConfig overrides passed to main().
SCRAPERS = {
    'CA': {
        'name': 'California CalCareers (full ingest)',
        'module': 'src.CA.ca_scraper',
        'kwargs': {},
        'enabled': True
    },
    'CA_RECENT': {
        'name': 'California CalCareers (last 7 days)',
        'module': 'src.CA.ca_scraper',
        'kwargs': {'max_age_days': 7},
        'enabled': False
    }
}


def setup_logging() -> None:
    """Log the batch run to the console and a timestamped file."""
    LOG_DIR.mkdir(exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )


def run_scraper(jurisdiction_code: str, test_mode: bool = False, argv: Optional[List[str]] = None) -> Dict:
    """
    Run a single scraper and return results.

    Args:
        jurisdiction_code: Key in SCRAPERS (e.g., 'CA', 'CA_RECENT')
        test_mode: If True, only the first pagination window is ingested
        argv: Arguments passed through to the scraper's main()

    Returns:
        Dict with results including success status, jobs scraped, and timing
    """
    scraper_info = SCRAPERS.get(jurisdiction_code)

    if not scraper_info:
        logger.error(f"Unknown jurisdiction: {jurisdiction_code}")
        return {
            'jurisdiction': jurisdiction_code,
            'success': False,
            'error': 'Unknown jurisdiction'
        }

    logger.info("=" * 80)
    logger.info(f"Starting scraper: {scraper_info['name']} ({jurisdiction_code})")
    logger.info("=" * 80)

    start_time = time.time()

    try:
        # Dynamically import the scraper module
        module_path = scraper_info['module']
        module = __import__(module_path, fromlist=['main'])

        kwargs = dict(scraper_info.get('kwargs', {}))
        if test_mode:
            kwargs['max_windows'] = 1

        summary = module.main(argv=list(argv or []), **kwargs)

        elapsed_time = time.time() - start_time

        result = {
            'jurisdiction': jurisdiction_code,
            'name': scraper_info['name'],
            'success': True,
            'jobs_scraped': summary.total_scraped,
            'jobs_updated': summary.total_updated,
            'coverage': summary.coverage_label,
            'elapsed_time': elapsed_time,
            'elapsed_time_formatted': f"{elapsed_time/60:.1f} minutes"
        }

        logger.info(f"✓ {scraper_info['name']} completed successfully")
        logger.info(f"  New jobs: {summary.total_scraped}")
        logger.info(f"  Coverage: {summary.coverage_label}")
        logger.info(f"  Time taken: {elapsed_time/60:.1f} minutes")

        return result

    except (Exception, SystemExit) as e:
        elapsed_time = time.time() - start_time
        logger.error(f"✗ {scraper_info['name']} failed: {str(e) or type(e).__name__}")

        return {
            'jurisdiction': jurisdiction_code,
            'name': scraper_info['name'],
            'success': False,
            'error': str(e) or type(e).__name__,
            'elapsed_time': elapsed_time
        }


def run_batch(jurisdictions: Optional[List[str]] = None, test_mode: bool = False,
              argv: Optional[List[str]] = None):
    """
    Run multiple scrapers in sequence.

    Args:
        jurisdictions: List of SCRAPERS keys to run. If None, runs all enabled.
        test_mode: If True, runs in test mode (first window only)
        argv: Arguments passed through to every scraper's main()
    """
    logger.info("")
    logger.info("=" * 80)
    logger.info("CALCAREERS JOB SCRAPER - BATCH RUN")
    logger.info("=" * 80)
    logger.info(f"Start time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info(f"Test mode: {test_mode}")
    logger.info(f"Log file: {log_file}")
    logger.info("")

    # Determine which scrapers to run
    if jurisdictions:
        to_run = [j for j in jurisdictions if j in SCRAPERS]
        logger.info(f"Running selected jobs: {', '.join(to_run)}")
    else:
        to_run = [code for code, info in SCRAPERS.items() if info['enabled']]
        logger.info(f"Running all enabled jobs: {', '.join(to_run)}")

    logger.info(f"Total scrapers: {len(to_run)}")
    logger.info("")

    results = []
    overall_start = time.time()

    for i, jurisdiction in enumerate(to_run, 1):
        logger.info(f"\n[{i}/{len(to_run)}] Running {SCRAPERS[jurisdiction]['name']}...")
        result = run_scraper(jurisdiction, test_mode, argv)
        results.append(result)
        logger.info("")

    overall_elapsed = time.time() - overall_start

    logger.info("=" * 80)
    logger.info("BATCH RUN SUMMARY")
    logger.info("=" * 80)

    successful = [r for r in results if r['success']]
    failed = [r for r in results if not r['success']]

    logger.info(f"Total scrapers run: {len(results)}")
    logger.info(f"Successful: {len(successful)}")
    logger.info(f"Failed: {len(failed)}")
    logger.info(f"Total time: {overall_elapsed/60:.1f} minutes")
    logger.info("")

    if successful:
        logger.info("Successful runs:")
        total_jobs = 0
        for r in successful:
            jobs = r.get('jobs_scraped', 0)
            total_jobs += jobs
            logger.info(f"  ✓ {r['name']}: {jobs} new jobs, coverage {r.get('coverage')} "
                        f"({r.get('elapsed_time_formatted', 'N/A')})")
        logger.info(f"\nTotal new jobs: {total_jobs}")
        logger.info("")

    if failed:
        logger.info("Failed runs:")
        for r in failed:
            logger.info(f"  ✗ {r['name']}: {r.get('error', 'Unknown error')}")
        logger.info("")

    logger.info(f"End time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info(f"Log saved to: {log_file}")
    logger.info("=" * 80)

    return results


def main():
    """Main entry point with command-line argument handling."""
    import argparse

    parser = argparse.ArgumentParser(
        description='Run CalCareers job scrapers in batch mode',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run all enabled scrapers
  python -m src.main

  # Run the seven-day refresh only
  python -m src.main --jurisdictions CA_RECENT

  # Quick validation: first pagination window only, local SQLite store
  python -m src.main --test -- --store sqlite

  # List available scrapers
  python -m src.main --list
        """
    )

    parser.add_argument(
        '--jurisdictions', '-j',
        nargs='+',
        choices=list(SCRAPERS.keys()),
        help='Specific scrapers to run (default: all enabled)'
    )

    parser.add_argument(
        '--test', '-t',
        action='store_true',
        help='Run in test mode (first pagination window only)'
    )

    parser.add_argument(
        '--list', '-l',
        action='store_true',
        help='List available scrapers and exit'
    )

    parser.add_argument(
        'scraper_args',
        nargs=argparse.REMAINDER,
        help='Arguments after -- are passed to each scraper (e.g. -- --store sqlite)'
    )

    args = parser.parse_args()

    if args.list:
        print("\nAvailable scrapers:")
        print("-" * 60)
        for code, info in SCRAPERS.items():
            status = "✓" if info['enabled'] else "✗"
            print(f"{status} {code:9s} - {info['name']}")
        print("-" * 60)
        print(f"Total: {len(SCRAPERS)} scrapers")
        print(f"Enabled: {sum(1 for s in SCRAPERS.values() if s['enabled'])}")
        print()
        return

    setup_logging()

    scraper_args = [a for a in args.scraper_args if a != '--']
    results = run_batch(
        jurisdictions=args.jurisdictions,
        test_mode=args.test,
        argv=scraper_args
    )

    # Exit with error code if any scrapers failed
    failed_count = sum(1 for r in results if not r['success'])
    if failed_count > 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
