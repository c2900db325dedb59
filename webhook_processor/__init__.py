import atexit

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask, jsonify
from flask_cors import CORS

from webhook_processor.errors import QueueStoreError
from webhook_processor.logging_config import configure_logging, get_logger
from webhook_processor.models import db

logger = get_logger(__name__)


def _run_scheduled_batch(app):
    """Scheduler job: one processor invocation inside an app context."""
    with app.app_context():
        processor = app.extensions["webhook_processor"]["processor"]
        try:
            processor.run(trigger="scheduler")
        except QueueStoreError as exc:
            # The next tick retries the whole batch
            logger.error("Scheduled webhook processing aborted", error=str(exc))
        finally:
            db.session.remove()


def init_scheduler(app):
    """Start the interval job that drains the webhook queue.

    Only runs when WEBHOOK_SCHEDULER_ENABLED is set, so that a single
    instance polls even when several web workers share the database.
    Overlapping instances are still safe: entries are claimed atomically.
    """
    if not app.config.get("WEBHOOK_SCHEDULER_ENABLED"):
        logger.info("Skipping scheduler startup on this worker")
        return None

    settings = app.extensions["webhook_processor"]["settings"]

    executors = {"default": ThreadPoolExecutor(1)}
    scheduler = BackgroundScheduler(executors=executors)
    scheduler.add_job(
        func=_run_scheduled_batch,
        args=[app],
        trigger="interval",
        seconds=settings.poll_interval_seconds,
        id="webhook_processor",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.start()
    atexit.register(lambda: scheduler.shutdown(wait=False))

    logger.info("Scheduler started", poll_interval_seconds=settings.poll_interval_seconds)
    return scheduler


def create_app(config_overrides=None):
    # Import config after dotenv is loaded
    from webhook_processor.config import ProcessorSettings, get_config
    from webhook_processor.db_config import configure_database
    from webhook_processor.processing.runner import build_processor
    from webhook_processor.services.queue_store import WebhookQueueStore
    from webhook_processor.webhooks import webhooks_bp

    config_class = get_config()
    config_overrides = dict(config_overrides or {})

    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_database(app, config_overrides)
    app.config.update(config_overrides)

    configure_logging(log_level=app.config.get("LOG_LEVEL", "INFO"), log_file=app.config.get("LOG_FILE"))
    logger.info(f"Starting application in {config_class.ENV} environment")

    CORS(app,
         resources={r"/webhooks/*": {"origins": "*"}},
         allow_headers=["authorization", "x-client-info", "apikey", "content-type",
                        "stripe-signature", "intuit-signature", "x-quickbooks-signature",
                        "plaid-verification", "x-webhook-source"],
         methods=["GET", "POST", "OPTIONS"])

    db.init_app(app)

    # Loaded once; immutable for the life of the process
    settings = ProcessorSettings.from_config(app.config)
    store = WebhookQueueStore()
    processor = build_processor(settings, store=store)
    app.extensions["webhook_processor"] = {
        "settings": settings,
        "store": store,
        "processor": processor,
    }
    atexit.register(processor.dispatcher.close)

    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"}), 200

    init_scheduler(app)
    return app
