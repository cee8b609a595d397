from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from app.core.config import settings


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. Upstash TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        new_query = urlencode(qs, doseq=True)
        return urlunparse(parsed._replace(query=new_query))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "clinic_booking",
    broker=_redis_url,
    backend=_redis_url,
    include=["app.tasks.jobs"],
)

celery.conf.timezone = "Asia/Ulaanbaatar"

# Holds expire lazily on poll/callback; the sweep only releases holds nobody asks about
celery.conf.beat_schedule = {}
if settings.EXPIRY_SWEEP_ENABLED:
    celery.conf.beat_schedule["expire-stale-holds-every-minute"] = {
        "task": "app.tasks.jobs.expire_stale_holds",
        "schedule": 60.0,
    }
