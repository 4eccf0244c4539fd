"""Read-only HTTP surface over the cached threat batch."""

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from threat_triage import __version__
from threat_triage.models import isoformat
from threat_triage.query import correlation_stats, filter_items, parse_timestamp

logger = logging.getLogger(__name__)

PHASE = 'phase-2'


def _limit(value: Optional[int], default: int, maximum: int) -> int:
    if value is None:
        return default
    return max(1, min(value, maximum))


def _etag(payload: Any) -> str:
    body = json.dumps(payload, sort_keys=True, default=str)
    return f'"{hashlib.md5(body.encode("utf-8")).hexdigest()}"'


def create_app(service, config=None) -> FastAPI:
    """
    Build the HTTP application.

    Args:
        service: ThreatService providing cached batches, sources and trends
        config: Optional Config with the ``api`` section

    Returns:
        FastAPI application
    """
    def setting(key: str, default):
        return config.get(f'api.{key}', default) if config is not None else default

    threats_default = setting('threats_default_limit', 100)
    threats_max = setting('threats_max_limit', 200)
    top_default = setting('top_default_limit', 10)
    top_max = setting('top_max_limit', 50)
    max_age = setting('cache_max_age', 900)

    app = FastAPI(title='Threat Triage', version=__version__)
    app.state.service = service

    @app.middleware('http')
    async def handle_errors(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            logger.exception(f"Request to {request.url.path} failed: {exc}")
            return JSONResponse(
                status_code=500,
                content={'error': 'Internal server error', 'message': str(exc), 'path': request.url.path},
            )

    def cached_json(request: Request, payload: Dict[str, Any]) -> Response:
        etag = _etag(payload)
        headers = {'Cache-Control': f'public, max-age={max_age}', 'ETag': etag}
        if request.headers.get('if-none-match') == etag:
            return Response(status_code=304, headers=headers)
        return JSONResponse(content=payload, headers=headers)

    @app.get('/api/threats')
    def list_threats(request: Request, limit: Optional[int] = None, after: Optional[str] = None,
                     tag: Optional[str] = None, q: Optional[str] = None,
                     severity: Optional[str] = None) -> Response:
        after_time = None
        if after:
            try:
                after_time = parse_timestamp(after)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Invalid 'after' timestamp: {after}")

        batch = service.get_threats_payload()
        items = filter_items(batch.get('items', []), after=after_time, tag=tag, q=q, severity=severity)
        items = items[:_limit(limit, threats_default, threats_max)]
        return cached_json(request, {
            'updated': batch.get('updated'),
            'count': len(items),
            'items': items,
            'correlationStats': correlation_stats(items),
        })

    @app.get('/api/top')
    def top_threats(request: Request, limit: Optional[int] = None) -> Response:
        top = service.get_top_payload()
        items = top.get('items', [])[:_limit(limit, top_default, top_max)]
        return cached_json(request, {'updated': top.get('updated'), 'count': len(items), 'items': items})

    @app.get('/api/trends')
    def trends(request: Request, hours: int = 24) -> Response:
        hours = max(1, min(hours, 168))
        return cached_json(request, service.trends.summarize(datetime.now(timezone.utc), hours))

    @app.get('/api/sources')
    def sources() -> Dict[str, Any]:
        data = service.sources.get_sources()
        data['blockedDomains'] = service.sources.blocked_domains()
        return data

    @app.get('/health')
    def health() -> Dict[str, Any]:
        cache_ok = service.cache.ping()
        return {
            'status': 'ok' if cache_ok else 'degraded',
            'cache': 'ok' if cache_ok else 'unavailable',
            'lastCycle': service.last_cycle,
            'timestamp': isoformat(datetime.now(timezone.utc)),
        }

    @app.get('/version')
    def version() -> Dict[str, str]:
        return {'version': __version__, 'phase': PHASE}

    return app
