"""Web dashboard and HTTP adapter for PulseTrack.

A lightweight Flask app that serves a single-page dashboard and exposes
every :class:`~pulsetrack.ui.api.PulseApi` route under ``/api/``.
"""

import logging
import threading

from flask import Flask, jsonify, render_template_string, request

from pulsetrack.ui.api import ApiRequest, PulseApi

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def create_flask_app(api: PulseApi) -> Flask:
    app = Flask(__name__)
    app.config["SEND_FILE_MAX_AGE_DEFAULT"] = 0

    @app.route("/")
    def index():
        return render_template_string(DASHBOARD_HTML)

    @app.route("/api/<path:subpath>", methods=["GET", "POST", "OPTIONS"])
    def api_dispatch(subpath):
        body = request.get_json(silent=True) if request.method == "POST" else None
        result = api.handle(
            ApiRequest(
                method=request.method,
                path=f"/api/{subpath}",
                query=request.args.to_dict(),
                body=body,
            )
        )
        response = jsonify(result.body)
        response.status_code = result.status
        response.headers.update(CORS_HEADERS)
        return response

    return app


def start_dashboard(api: PulseApi, port: int = 18492) -> threading.Thread:
    """Start the Flask dashboard in a daemon thread."""
    flask_app = create_flask_app(api)

    def _run():
        flask_app.run(host="127.0.0.1", port=port, debug=False, use_reloader=False)

    t = threading.Thread(target=_run, daemon=True, name="pulsetrack-web")
    t.start()
    logger.info("Dashboard started at http://127.0.0.1:%d", port)
    return t


DASHBOARD_HTML = r"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>PulseTrack</title>
<style>
  :root { --bg:#0f1115; --card:#181b22; --text:#e6e6e6; --muted:#8a8f98; --accent:#6366f1; }
  body { background:var(--bg); color:var(--text); font:14px -apple-system, system-ui, sans-serif; margin:0; padding:24px; }
  h1 { font-size:20px; margin:0 0 16px; }
  h2 { font-size:15px; margin:0 0 12px; color:var(--muted); font-weight:500; }
  .grid { display:grid; grid-template-columns:repeat(auto-fit, minmax(320px, 1fr)); gap:16px; }
  .card { background:var(--card); border-radius:10px; padding:16px; }
  .row { display:flex; justify-content:space-between; padding:4px 0; }
  .bar { height:6px; background:var(--accent); border-radius:3px; margin:2px 0 8px; }
  .muted { color:var(--muted); }
  .brand { font-weight:600; margin-top:8px; }
  .project { padding-left:14px; }
  button { background:var(--accent); color:#fff; border:0; border-radius:6px; padding:4px 10px; cursor:pointer; }
</style>
</head>
<body>
<h1>PulseTrack <span id="total" class="muted"></span></h1>
<div class="grid">
  <div class="card"><h2>Apps today</h2><div id="apps"></div></div>
  <div class="card"><h2>Brands &amp; projects</h2><div id="brands"></div></div>
  <div class="card"><h2>Suggestions</h2><div id="suggestions"></div></div>
</div>
<script>
function fmt(s) {
  if (s < 60) return s + 's';
  if (s < 3600) { const m = Math.floor(s / 60), r = s % 60; return r ? m + 'm ' + r + 's' : m + 'm'; }
  const h = Math.floor(s / 3600), m = Math.floor((s % 3600) / 60);
  return m ? h + 'h ' + m + 'm' : h + 'h';
}
function esc(t) { const d = document.createElement('div'); d.textContent = t; return d.innerHTML; }
async function fetchJSON(url, opts) { const r = await fetch(url, opts); return r.json(); }

async function loadDay() {
  const d = await fetchJSON('/api/report/day');
  document.getElementById('total').textContent = fmt(d.totalSeconds);
  const el = document.getElementById('apps');
  if (!d.apps.length) { el.innerHTML = '<div class="muted">No activity recorded.</div>'; return; }
  el.innerHTML = d.apps.map(a =>
    '<div class="row"><span>' + esc(a.appName) + '</span><span>' + fmt(a.totalSeconds) + '</span></div>' +
    '<div class="bar" style="width:' + (100 * a.totalSeconds / d.totalSeconds).toFixed(1) + '%"></div>'
  ).join('');
}

async function loadBrands() {
  const d = await fetchJSON('/api/report/brands');
  const el = document.getElementById('brands');
  if (!d.brands.length) { el.innerHTML = '<div class="muted">No classified activity.</div>'; return; }
  el.innerHTML = d.brands.map(b =>
    '<div class="row brand" style="color:' + esc(b.color) + '"><span>' + esc(b.brandName) + '</span><span>' + fmt(b.totalSeconds) + '</span></div>' +
    b.projects.map(p => '<div class="row project"><span>' + esc(p.projectName) + '</span><span>' + fmt(p.totalSeconds) + '</span></div>').join('')
  ).join('');
}

async function loadSuggestions() {
  const d = await fetchJSON('/api/suggestions');
  const el = document.getElementById('suggestions');
  if (!d.brands.length) { el.innerHTML = '<div class="muted">Nothing new detected.</div>'; return; }
  el.innerHTML = d.brands.map(b =>
    '<div class="row"><span>' + esc(b.suggestedName) + ' <span class="muted">(' + b.totalActivities + ')</span></span>' +
    '<span><button data-root="' + esc(b.rootToken) + '" data-action="accept">Accept</button> ' +
    '<button data-root="' + esc(b.rootToken) + '" data-action="dismiss">Dismiss</button></span></div>'
  ).join('');
  el.querySelectorAll('button').forEach(btn => btn.onclick = async () => {
    await fetchJSON('/api/suggestions/' + btn.dataset.action, {
      method: 'POST', headers: {'Content-Type': 'application/json'},
      body: JSON.stringify({rootToken: btn.dataset.root}),
    });
    refresh();
  });
}

function refresh() { loadDay(); loadBrands(); loadSuggestions(); }
refresh();
setInterval(refresh, 30000);
</script>
</body>
</html>
"""
