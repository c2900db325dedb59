"""
Run the webhook processor from the command line (cron, one-off operator runs).

Usage:
    python -m webhook_processor.scripts.process_webhooks            # one batch
    python -m webhook_processor.scripts.process_webhooks --drain    # until idle
    python -m webhook_processor.scripts.process_webhooks --status   # queue counts
"""
import argparse
import json
import sys

from dotenv import load_dotenv

from webhook_processor.errors import QueueStoreError

load_dotenv()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Process due webhook queue entries.")
    parser.add_argument("--limit", type=int, default=None, help="Override the batch size for this run")
    parser.add_argument("--drain", action="store_true", help="Keep running batches until nothing is due")
    parser.add_argument("--max-batches", type=int, default=100, help="Safety cap for --drain")
    parser.add_argument("--status", action="store_true", help="Print queue counts per status and exit")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    from webhook_processor import create_app

    args = parse_args(argv)
    app = create_app()

    with app.app_context():
        services = app.extensions["webhook_processor"]

        if args.status:
            print(json.dumps(services["store"].count_by_status(), indent=2))
            return 0

        processor = services["processor"]
        batches = 0
        try:
            while True:
                summary = processor.run(trigger="cli", limit=args.limit)
                batches += 1
                print(json.dumps(summary.to_dict(), indent=2))
                if not args.drain or summary.processed == 0 or batches >= args.max_batches:
                    break
        except QueueStoreError as exc:
            print(f"✗ Webhook processing aborted: {exc}", file=sys.stderr)
            return 1
        finally:
            processor.dispatcher.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
