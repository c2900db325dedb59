"""
HTTP endpoints: queue processing trigger, universal webhook receiver,
and a queue status view for operators.
"""
import json

from flask import current_app, jsonify, request

from webhook_processor.errors import QueueStoreError, SignatureVerificationError
from webhook_processor.logging_config import get_logger
from webhook_processor.webhooks import webhooks_bp
from webhook_processor.webhooks.ingest import extract_event_identity, find_signature, verify_signature

logger = get_logger(__name__)


def _services():
    return current_app.extensions["webhook_processor"]


@webhooks_bp.route("/process", methods=["GET", "POST"])
def process_webhooks():
    """Run one processor invocation. No request body is required."""
    processor = _services()["processor"]
    try:
        summary = processor.run(trigger="http")
    except QueueStoreError as exc:
        logger.error("Webhook processor error", error=str(exc), exc_info=True)
        return jsonify({
            "error": "Internal server error",
            "message": str(exc)
        }), 500

    return jsonify(summary.to_dict()), 200


@webhooks_bp.route("/receive", methods=["GET", "POST"])
def receive_webhook():
    """Store an inbound provider webhook and queue it for processing."""
    if request.method != "POST":
        return jsonify({"error": "Method not allowed"}), 405

    source = (request.args.get("source") or request.headers.get("X-Webhook-Source") or "unknown").strip().lower()
    logger.info(f"Received webhook from source: {source}")

    raw_body = request.get_data()
    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError:
        return jsonify({"error": "Invalid JSON payload"}), 400
    if not isinstance(payload, dict):
        return jsonify({"error": "Webhook payload must be a JSON object"}), 400

    services = _services()
    signature = find_signature(source, request.headers)
    try:
        verify_signature(source, raw_body, signature, services["settings"])
    except SignatureVerificationError as exc:
        return jsonify({"error": str(exc)}), 401

    event_type, event_id = extract_event_identity(source, payload)
    logger.info(f"Processing event: {event_type} ({event_id})")

    try:
        event, created = services["store"].enqueue(
            source=source,
            event_type=event_type,
            event_id=event_id,
            payload=payload,
            signature=signature,
        )
    except QueueStoreError as exc:
        logger.error("Webhook receiver error", error=str(exc), exc_info=True)
        return jsonify({
            "error": "Internal server error",
            "message": str(exc)
        }), 500

    if not created:
        return jsonify({
            "success": True,
            "message": "Event already processed",
            "event_id": event_id
        }), 200

    return jsonify({
        "success": True,
        "event_id": event_id,
        "webhook_event_id": event.id,
        "message": "Webhook received and queued for processing"
    }), 200


@webhooks_bp.route("/queue", methods=["GET"])
def queue_status():
    """Counts of queue entries per status."""
    try:
        counts = _services()["store"].count_by_status()
    except QueueStoreError as exc:
        logger.error("Error reading webhook queue status", error=str(exc))
        return jsonify({"error": "Internal server error", "message": str(exc)}), 500
    return jsonify({"queue": counts, "total_count": sum(counts.values())}), 200
