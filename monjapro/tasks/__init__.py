from monjapro.tasks.mercadopago import process_webhook_event  # noqa: F401
