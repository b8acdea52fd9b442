#!/usr/bin/env python3
"""
Flask query API for the tender dashboard.
Reads only from the tender repository; the scrape trigger delegates to the orchestrator.
"""

import logging
import math
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request
from flask_caching import Cache
from flask_compress import Compress
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix

from cors_config import configure_cors
from scrape_worker import build_orchestrator, build_scheduler, run_pending_forever, scheduled_run
from tenderwatch.classification.keywords import CATEGORIES
from tenderwatch.config import Settings, configure_logging, load_settings
from tenderwatch.errors import ScrapeInProgress

logger = logging.getLogger(__name__)

STATUS_FILTERS = ('open', 'awarded', 'all')


def _parse_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {'1', 'true', 'yes', 'on'}


def _days_until(closing_date: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    if not closing_date:
        return None
    try:
        closing = datetime.fromisoformat(str(closing_date).replace('Z', '+00:00'))
    except ValueError:
        return None
    if closing.tzinfo is None:
        closing = closing.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return math.ceil((closing - now).total_seconds() / 86400)


def _present(tender: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(tender)
    out['is_open'] = tender.get('tender_status') == 'open'
    out['days_until_close'] = _days_until(tender.get('closing_date'))
    return out


def create_app(repo, orchestrator=None, *, settings: Optional[Settings] = None, config: Optional[Dict[str, Any]] = None) -> Flask:
    """Build the API around an already-open repository."""
    settings = settings or Settings()
    app = Flask(__name__)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)
    app.config['CACHE_TYPE'] = 'SimpleCache'
    app.config['CACHE_DEFAULT_TIMEOUT'] = 60
    app.config.update(config or {})
    configure_cors(app, settings.cors_origins)

    cache = Cache(app)
    Compress(app)
    limiter = Limiter(key_func=get_remote_address, default_limits=["2000 per day", "200 per hour"], storage_uri="memory://")
    limiter.init_app(app)

    app.extensions['tender_repo'] = repo
    app.extensions['scrape_orchestrator'] = orchestrator

    @app.route('/api/health')
    @limiter.exempt
    def health_check():
        """API health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'scrape_running': bool(orchestrator and orchestrator.running),
        })

    @app.route('/api/tenders', methods=['GET'])
    def get_tenders():
        """Tenders for the dashboard, open first."""
        try:
            limit = request.args.get('limit', 100, type=int) or 100
            state = (request.args.get('state') or '').strip()
            status = (request.args.get('status') or 'all').strip().lower()
            category = (request.args.get('category') or '').strip()
            if status not in STATUS_FILTERS:
                return jsonify({'success': False, 'error': f"status must be one of {', '.join(STATUS_FILTERS)}"}), 400

            if status == 'open':
                tenders = repo.select_open(limit)
            elif status == 'awarded':
                tenders = repo.select_awarded(limit)
            elif state and state.upper() != 'ALL':
                tenders = repo.select_by_region(state, limit)
            else:
                tenders = repo.select_recent(limit)

            if category and category.upper() != 'ALL':
                tenders = [t for t in tenders if t.get('category') == category]

            return jsonify({'success': True, 'count': len(tenders), 'tenders': [_present(t) for t in tenders]})
        except Exception as e:
            logger.error(f"Error listing tenders: {e}", exc_info=True)
            return jsonify({'success': False, 'error': str(e)}), 500

    @app.route('/api/stats', methods=['GET'])
    @cache.cached()
    def get_stats():
        try:
            total = repo.count()
            open_count = repo.count_open()
            return jsonify({
                'success': True,
                'total_construction_tenders': total,
                'open_tenders': open_count,
                'awarded_contracts': total - open_count,
            })
        except Exception as e:
            logger.error(f"Error computing stats: {e}", exc_info=True)
            return jsonify({'success': False, 'error': str(e)}), 500

    @app.route('/api/categories', methods=['GET'])
    @cache.cached()
    def get_categories():
        try:
            return jsonify({'success': True, 'categories': repo.category_counts(), 'taxonomy': list(CATEGORIES)})
        except Exception as e:
            logger.error(f"Error listing categories: {e}", exc_info=True)
            return jsonify({'success': False, 'error': str(e)}), 500

    @app.route('/api/sources', methods=['GET'])
    def get_sources():
        sources = orchestrator.sources if orchestrator is not None else []
        return jsonify({
            'success': True,
            'sources': [
                {
                    'name': s.name,
                    'enabled': bool(getattr(s, 'enabled', True)),
                    'priority': getattr(s, 'priority', None),
                    'transport': getattr(s, 'transport', None),
                }
                for s in sources
            ],
        })

    @app.route('/api/scrape', methods=['POST'])
    @limiter.limit("10 per hour")
    def trigger_scrape():
        """Run one scrape cycle synchronously and return its summary."""
        if orchestrator is None:
            return jsonify({'success': False, 'error': 'scraping is not configured'}), 503
        body = request.get_json(silent=True) or {}
        parallel = _parse_bool(body.get('parallel', request.args.get('parallel')))
        try:
            summary = orchestrator.run(parallel=parallel)
        except ScrapeInProgress as e:
            return jsonify({'success': False, 'error': str(e)}), 409
        except Exception as e:
            logger.error(f"Error running scrape: {e}", exc_info=True)
            return jsonify({'success': False, 'error': str(e)}), 500
        cache.clear()
        payload = summary.to_dict()
        payload['success'] = True
        return jsonify(payload)

    return app


def start_background_scraping(orchestrator, settings: Settings) -> threading.Thread:
    """Initial scrape, then periodic ticks, on the orchestrator the API triggers.

    Sharing the orchestrator means manual triggers and ticks contend for one
    run lock: whichever arrives second gets ScrapeInProgress.
    """
    scheduler = build_scheduler(orchestrator, settings.scrape_interval_minutes, settings.scrape_parallel)

    def _run():
        scheduled_run(orchestrator, settings.scrape_parallel)
        run_pending_forever(scheduler)

    thread = threading.Thread(target=_run, name="scrape-scheduler", daemon=True)
    thread.start()
    return thread


if __name__ == '__main__':
    from tenderwatch.storage.tender_repo import connect_repo

    settings = load_settings()
    configure_logging(settings.log_level)
    repo = connect_repo(settings.db_dsn)
    orchestrator = build_orchestrator(settings, repo)
    app = create_app(repo, orchestrator, settings=settings)
    start_background_scraping(orchestrator, settings)

    logger.info(f"Starting tender API on port {settings.port}")
    try:
        app.run(host='0.0.0.0', port=settings.port, threaded=True)
    finally:
        repo.close()
