"""
DarkJS Hunter Web API
Flask JSON endpoints for triggering scans, recording live request events, and reading/exporting findings.
"""

import asyncio
import os
import threading

from flask import Flask, Response, jsonify, request

from darkjs.core.config import SettingsManager, get_default_config
from darkjs.core.logger import logger
from darkjs.collectors.page_source import PageSnapshot
from darkjs.output.exporter import (
    compute_stats, findings_to_csv, flatten_records, rows_to_csv, rows_to_json, select_rows
)
from darkjs.scan_engine import ScanEngine
from darkjs.services.datastore import AggregationStore, JsonFileStore, SettingsStore


class AsyncBridge:
    """One event loop on a background thread; every request runs its coroutine there,
    so per-subject store locks are shared by all requests."""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self.loop.run_forever, name="darkjs-loop", daemon=True)
        self.thread.start()

    def run(self, coro):
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result()


def create_app(config=None, kv_store=None, page_source=None, fetcher=None) -> Flask:
    config = config or get_default_config()

    if kv_store is None:
        os.makedirs(config.output_dir, exist_ok=True)
        kv_store = JsonFileStore(config.output_dir)

    store = AggregationStore(kv_store, max_findings=config.max_findings)
    settings_manager = SettingsManager(SettingsStore(kv_store))
    engine = ScanEngine(config, store, settings_manager, page_source=page_source,
                        fetcher=fetcher, silent_mode=True)
    bridge = AsyncBridge()

    app = Flask(__name__)
    app.config['ENGINE'] = engine
    app.config['BRIDGE'] = bridge

    def selected_records():
        scope = request.args.get('subject')
        if scope:
            return bridge.run(store.get_many([scope]))
        return bridge.run(store.all_records())

    def selected_rows():
        dedupe = request.args.get('dedupe', 'true').lower() not in ('0', 'false', 'no')
        return select_rows(
            selected_records(),
            request.args.get('type', 'all'),
            request.args.get('search'),
            dedupe
        )

    @app.route('/api/subjects', methods=['GET'])
    def api_subjects():
        records = bridge.run(store.all_records())
        subjects = []
        for record in records:
            subjects.append({
                'subjectId': record.subject_id,
                'pageUrl': record.page_url,
                'pageTitle': record.page_title,
                'lastScannedAt': record.last_scanned_at,
                'stats': compute_stats(flatten_records([record]))
            })
        return jsonify({'success': True, 'subjects': subjects})

    @app.route('/api/subjects/<subject_id>', methods=['GET'])
    def api_subject(subject_id):
        record = bridge.run(store.get(subject_id))
        if record is None:
            return jsonify({'success': False, 'error': 'Unknown subject'}), 404
        return jsonify({'success': True, 'data': record.to_dict()})

    @app.route('/api/subjects/<subject_id>/export.csv', methods=['GET'])
    def api_subject_csv(subject_id):
        record = bridge.run(store.get(subject_id))
        if record is None:
            return jsonify({'success': False, 'error': 'Unknown subject'}), 404
        return Response(
            findings_to_csv(record.findings),
            mimetype='text/csv',
            headers={'Content-Disposition': f'attachment; filename=darkjs_{subject_id}.csv'}
        )

    @app.route('/api/subjects/<subject_id>', methods=['DELETE'])
    def api_close_subject(subject_id):
        bridge.run(engine.close_subject(subject_id))
        return jsonify({'success': True})

    @app.route('/api/findings', methods=['GET'])
    def api_findings():
        rows = selected_rows()
        return jsonify({'success': True, 'stats': compute_stats(rows), 'findings': rows})

    @app.route('/api/export.csv', methods=['GET'])
    def api_export_csv():
        return Response(
            rows_to_csv(selected_rows()),
            mimetype='text/csv',
            headers={'Content-Disposition': 'attachment; filename=darkjs_findings.csv'}
        )

    @app.route('/api/export.json', methods=['GET'])
    def api_export_json():
        return Response(
            rows_to_json(selected_rows()),
            mimetype='application/json',
            headers={'Content-Disposition': 'attachment; filename=darkjs_findings.json'}
        )

    @app.route('/api/scan', methods=['POST'])
    def api_scan():
        data = request.get_json(silent=True) or {}
        subject_id = str(data.get('subject', '')).strip()
        url = (data.get('url') or '').strip()
        snapshot_data = data.get('snapshot')

        if not subject_id:
            return jsonify({'success': False, 'error': 'No subject specified'}), 400
        if not url and not snapshot_data:
            return jsonify({'success': False, 'error': 'No url or snapshot specified'}), 400

        snapshot = PageSnapshot.from_dict(snapshot_data) if isinstance(snapshot_data, dict) else None
        report = bridge.run(engine.scan_subject(subject_id, url=url or None, snapshot=snapshot))

        return jsonify({'success': not report.failed, 'data': report.to_dict()})

    @app.route('/api/events', methods=['POST'])
    def api_events():
        data = request.get_json(silent=True) or {}
        subject_id = str(data.get('subject', '')).strip()
        url = (data.get('url') or '').strip()

        if not subject_id or not url:
            return jsonify({'success': False, 'error': 'Subject and url are required'}), 400

        try:
            status = int(data.get('status') or 0)
        except (TypeError, ValueError):
            status = 0

        try:
            finding = bridge.run(engine.record_external_finding(
                subject_id, url,
                method=data.get('method') or 'GET',
                status=status,
                kind=data.get('kind') or 'network'
            ))
        except ValueError as e:
            return jsonify({'success': False, 'error': str(e)}), 400

        return jsonify({
            'success': True,
            'recorded': finding is not None,
            'finding': finding.to_tuple() if finding else None
        })

    @app.route('/api/settings', methods=['GET'])
    def api_get_settings():
        settings = bridge.run(settings_manager.get())
        return jsonify({'success': True, 'settings': settings.to_dict()})

    @app.route('/api/settings', methods=['POST'])
    def api_set_settings():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({'success': False, 'error': 'Settings object required'}), 400

        current = bridge.run(settings_manager.get()).to_dict()
        current.update(data)
        bridge.run(settings_manager.store.set(current))
        logger.info("Settings updated via API")

        return jsonify({'success': True, 'settings': bridge.run(settings_manager.get()).to_dict()})

    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    create_app().run(host='0.0.0.0', port=port, debug=False)
