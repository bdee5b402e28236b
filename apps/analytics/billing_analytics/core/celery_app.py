from celery import Celery

from billing_analytics.core.config import get_settings

settings = get_settings()

celery_app = Celery("billing_analytics", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.imports = ("billing_analytics.bundles.tasks",)
