#!/usr/bin/env python3

"""
GST Lookup - Main Entry Point
Looks up GST taxpayer registrations through the public search portal
"""

import argparse
import json
import logging
import sys
import threading
from typing import Dict, List

from dotenv import load_dotenv

from config_loader import load_config
from lookup_worker import LookupWorker
from models import TaxpayerRecord, is_valid_identifier, normalize_identifier
from output_writer import OutputWriter, format_response
from run_metrics import RunMetrics
from setup_session import setup_session


def setup_logging(config) -> None:
    """Configure logging for the application"""
    log_file = config.get_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, config.get_log_level(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file}")


def display_config(config) -> None:
    """Display loaded configuration"""
    print("\n" + "="*60)
    print("🧾 GST LOOKUP v0.1")
    print("="*60)

    print(f"\n🌐 Portal: {config.get_search_url()}")
    print(f"🔁 Max attempts per lookup: {config.get_max_attempts()}")
    print(f"⏱️  Payload wait: {config.get_payload_wait()}s")

    print(f"\n⚙️  BROWSER SETTINGS:")
    print(f"  Headless mode: {config.is_headless()}")
    print(f"  Page timeout: {config.get_page_timeout()/1000}s")
    print(f"  Keep-alive: every {config.get_keepalive_interval()}s")
    print(f"  Stealth: {config.use_stealth()}")

    print(f"\n🔐 CAPTCHA:")
    print(f"  Timeout: {config.get_captcha_timeout()}s (on timeout: {config.get_captcha_on_timeout()})")
    print(f"  Answer provider: {config.get_captcha_answer_provider()}")

    print(f"\n💾 OUTPUT:")
    print(f"  JSON: {config.get_output_path('json')}")
    print(f"  Markdown: {config.get_output_path('markdown')}")

    print("\n" + "="*60 + "\n")


def split_identifiers(raw: List[str]) -> tuple:
    """Normalize identifiers and separate out malformed ones"""
    valid, invalid = [], []
    for value in raw:
        identifier = normalize_identifier(value)
        if not identifier:
            continue
        (valid if is_valid_identifier(identifier) else invalid).append(identifier)
    return valid, invalid


def run_batch(worker: LookupWorker, identifiers: List[str]) -> tuple:
    """Queue every identifier, drain the worker on this thread, then collect results"""
    futures = {identifier: worker.submit(identifier) for identifier in identifiers}
    worker.stop()
    worker.run()

    records: List[TaxpayerRecord] = []
    failures: Dict[str, str] = {}
    for identifier, future in futures.items():
        if future.cancelled():
            failures[identifier] = "Lookup cancelled"
            continue
        error = future.exception()
        if error is not None:
            failures[identifier] = str(error)
            print(f"❌ {identifier}: {error}")
        else:
            record = future.result()
            records.append(record)
            print(f"✅ {record}")
    return records, failures


def serve(worker: LookupWorker) -> None:
    """Read GSTINs from stdin, one per line, and print JSON responses"""
    logger = logging.getLogger(__name__)

    def report(identifier, future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            body = {"gstin": identifier, "error": str(error), "timeout": getattr(error, "is_timeout", False)}
        else:
            body = format_response(future.result())
        print(json.dumps(body, default=str), flush=True)

    def read_stdin():
        for line in sys.stdin:
            identifier = normalize_identifier(line)
            if not identifier:
                continue
            if not is_valid_identifier(identifier):
                print(json.dumps({"gstin": identifier, "error": "Invalid GSTIN format"}), flush=True)
                continue
            future = worker.submit(identifier)
            future.add_done_callback(lambda f, i=identifier: report(i, f))
        logger.info("Input closed, stopping worker")
        worker.stop()

    reader = threading.Thread(target=read_stdin, name="stdin-reader", daemon=True)
    reader.start()
    print("📡 Serving lookups: enter one GSTIN per line (Ctrl+D to finish)")
    worker.run()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="GST taxpayer lookup")
    parser.add_argument(
        "gstins",
        nargs="*",
        help="GSTINs to look up",
    )
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to config YAML",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Keep the browser open and read GSTINs from stdin",
    )
    parser.add_argument(
        "--setup-session",
        action="store_true",
        help="Open a browser to clear the CAPTCHA once and save cookies",
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main execution function"""
    print("\n🚀 Starting GST Lookup...")
    load_dotenv()
    args = parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"❌ Error: {e}")
        print("Make sure config/settings.yaml exists!")
        return 1
    except Exception as e:
        print(f"❌ Error loading config: {e}")
        return 1

    # Setup logging
    setup_logging(config)
    logger = logging.getLogger(__name__)

    if args.setup_session:
        return 0 if setup_session(config) else 1

    display_config(config)

    identifiers, invalid = split_identifiers(args.gstins)
    for identifier in invalid:
        print(f"⚠️  Skipping invalid GSTIN: {identifier}")
        logger.warning("Invalid GSTIN format: %s", identifier)

    if not identifiers and not args.serve:
        print("⚠️  No valid GSTINs given. Pass GSTINs as arguments or use --serve.")
        return 1

    metrics = RunMetrics(mode="serve" if args.serve else "lookup")
    worker = LookupWorker(config, metrics=metrics)

    records: List[TaxpayerRecord] = []
    failures: Dict[str, str] = {}
    try:
        if args.serve:
            serve(worker)
        else:
            print(f"📝 Looking up {len(identifiers)} GSTIN(s)...")
            records, failures = run_batch(worker, identifiers)
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted; shutting down browser.")
        logger.warning("Interrupted by user")
        worker.session.shutdown()
    finally:
        metrics.finish()
        if config.is_metrics_enabled():
            path = metrics.write_json(template=config.get_metrics_template())
            logger.info("Run metrics written: %s", path)

    if args.serve:
        return 0

    output_files = OutputWriter(config).write_all(records, failures)

    # Summary
    print("\n" + "="*60)
    print("✅ GST LOOKUP COMPLETE")
    print("="*60)
    print(f"\n📊 Results: {len(records)} found, {len(failures)} failed")
    print(f"📁 Files:")
    print(f"   JSON: {output_files['json']}")
    print(f"   Markdown: {output_files['markdown']}")
    print("\n" + "="*60 + "\n")

    logger.info(f"Lookup run complete: {len(records)} records saved")
    return 0 if not failures else 2


if __name__ == "__main__":
    sys.exit(main())
