"""Operator endpoints guarded by the admin token."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import HTMLResponse

if TYPE_CHECKING:
    from session_gateway.containers import AppContainer

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_admin_token(request: Request) -> str | None:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str | None = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not admin_token or not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.get("/health", dependencies=[Depends(require_admin)])
async def admin_health() -> dict[str, str]:
    """Admin health check endpoint."""
    return {"status": "ok"}


@router.get("/sessions", dependencies=[Depends(require_admin)])
async def list_sessions(request: Request) -> dict[str, object]:
    """Return detailed snapshots of every tracked session."""
    container: AppContainer = request.app.state.container
    return {
        "sessions": [snapshot.to_dict() for snapshot in container.registry.list()]
    }


@router.post("/sweep", dependencies=[Depends(require_admin)])
async def run_sweep(request: Request) -> dict[str, object]:
    """Run one janitor pass immediately."""
    container: AppContainer = request.app.state.container
    reaped = await container.janitor.run_once()
    return {"reaped": sorted(reaped)}


@router.get("/ui", response_class=HTMLResponse)
async def admin_ui() -> HTMLResponse:
    """Operator page for session inspection and cleanup."""
    return HTMLResponse(_ADMIN_UI_HTML)


_ADMIN_UI_HTML = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <title>Session Gateway</title>
    <style>
      body { font-family: system-ui, sans-serif; margin: 2rem; max-width: 960px; }
      fieldset { border: 1px solid #ddd; margin-bottom: 1rem; }
      table { border-collapse: collapse; width: 100%; margin-top: 1rem; }
      th, td { border-bottom: 1px solid #eee; padding: 0.3rem 0.5rem; }
      th { text-align: left; }
      .failed { color: #b00020; }
      .ready { color: #1b5e20; }
      #log { background: #f6f6f6; padding: 0.75rem; white-space: pre-wrap; }
    </style>
  </head>
  <body>
    <h1>Session Gateway</h1>
    <fieldset>
      <legend>Credentials</legend>
      <input id="token" type="password" placeholder="X-Admin-Token" size="40" />
      <button onclick="refreshSessions()">Load sessions</button>
      <button onclick="sweep()">Run janitor sweep</button>
    </fieldset>
    <fieldset>
      <legend>Identity</legend>
      <input id="identity" placeholder="identity" />
      <button onclick="identityAction('GET', 'status')">Status</button>
      <button onclick="identityAction('POST', 'reset')">Reset</button>
      <a id="qr-link" href="#" target="_blank">Open QR page</a>
    </fieldset>
    <table>
      <thead>
        <tr><th>Identity</th><th>Status</th><th>Challenge</th>
        <th>Changed</th><th>Detail</th></tr>
      </thead>
      <tbody id="sessions"></tbody>
    </table>
    <div id="log"></div>
    <script>
      const FAILED = ['auth_failed', 'disconnected', 'error'];

      function show(value) {
        document.getElementById('log').textContent =
          typeof value === 'string' ? value : JSON.stringify(value, null, 2);
      }

      async function request(method, path, admin) {
        const headers = {};
        if (admin) {
          headers['X-Admin-Token'] = document.getElementById('token').value;
        }
        const res = await fetch(path, { method, headers });
        const body = await res.json().catch(() => null);
        if (!res.ok) {
          throw new Error(res.status + ' ' + JSON.stringify(body));
        }
        return body;
      }

      async function refreshSessions() {
        try {
          const data = await request('GET', '/admin/sessions', true);
          const rows = data.sessions.map((s) => {
            const css = FAILED.includes(s.status)
              ? 'failed'
              : s.status === 'ready' ? 'ready' : '';
            return '<tr><td>' + s.identity + '</td>' +
              '<td class="' + css + '">' + s.status + '</td>' +
              '<td>' + (s.has_challenge ? 'pending' : '') + '</td>' +
              '<td>' + s.last_state_change_at + '</td>' +
              '<td>' + (s.error_detail || '') + '</td></tr>';
          });
          document.getElementById('sessions').innerHTML = rows.join('');
          show(data.sessions.length + ' session(s)');
        } catch (err) {
          show(err.message);
        }
      }

      async function sweep() {
        try {
          show(await request('POST', '/admin/sweep', true));
          await refreshSessions();
        } catch (err) {
          show(err.message);
        }
      }

      async function identityAction(method, action) {
        const identity = encodeURIComponent(
          document.getElementById('identity').value
        );
        document.getElementById('qr-link').href = '/qr/' + identity;
        try {
          show(await request(method, '/' + action + '/' + identity, false));
        } catch (err) {
          show(err.message);
        }
      }
    </script>
  </body>
</html>
"""
