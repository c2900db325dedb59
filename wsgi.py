from webhook_processor import create_app

app = create_app()

# gunicorn -w 2 wsgi:app
# Enable WEBHOOK_SCHEDULER_ENABLED on one instance only, or trigger /webhooks/process from cron.
