"""
Full-screen pages served in place of the site: the block screen and the
maintenance notice.
"""

from html import escape

from portal.core.config import settings
from portal.services.guard.access_guard import GuardDecision


BLOCKED_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Access Denied | {app_name}</title>
<style>
  body {{ margin: 0; min-height: 100vh; display: flex; flex-direction: column; align-items: center;
         justify-content: center; text-align: center; background: #450a0a; color: #fecaca;
         font-family: system-ui, sans-serif; padding: 24px; box-sizing: border-box; }}
  h1 {{ font-size: 3rem; color: #ef4444; text-transform: uppercase; margin: 0 0 16px; }}
  .card {{ background: rgba(0,0,0,.4); border: 1px solid rgba(239,68,68,.3); border-radius: 16px;
          padding: 24px; max-width: 32rem; width: 100%; }}
  .timer {{ font-family: monospace; background: rgba(0,0,0,.5); border-radius: 8px; padding: 8px; color: #f87171; }}
  .hint {{ margin-top: 32px; color: #991b1b; font-size: .9rem; max-width: 28rem; }}
</style>
</head>
<body>
<h1>Access Denied</h1>
<div class="card">
  <p><strong>System Protective Firewall Activated</strong></p>
  <p>{message}</p>
  <div class="timer">IP Block Active for: <span id="countdown" data-remaining="{remaining}">{countdown}</span></div>
</div>
<p class="hint">Your actions triggered our automated defense system.
Please stop rapid refreshing or automated requests.</p>
<script>
(function () {{
  var el = document.getElementById("countdown");
  var left = parseInt(el.getAttribute("data-remaining"), 10);
  var timer = setInterval(function () {{
    left -= 1;
    if (left <= 0) {{ clearInterval(timer); window.location.reload(); return; }}
    el.textContent = Math.floor(left / 60) + "m " + (left % 60) + "s";
  }}, 1000);
}})();
</script>
</body>
</html>
"""

MAINTENANCE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>System Upgrade | {app_name}</title>
<style>
  body {{ margin: 0; min-height: 100vh; display: flex; align-items: center; justify-content: center;
         background: #0B0B3B; color: #dbeafe; font-family: system-ui, sans-serif; padding: 24px;
         box-sizing: border-box; }}
  .card {{ max-width: 40rem; background: rgba(255,255,255,.05); border: 1px solid rgba(255,255,255,.1);
          border-radius: 40px; padding: 48px; text-align: center; }}
  h1 {{ color: #fff; font-size: 2.5rem; }}
  h1 span {{ color: #60a5fa; }}
</style>
</head>
<body>
<div class="card">
  <h1>System <span>Upgrade</span></h1>
  <p>We're currently performing some scheduled maintenance to improve your experience.
  Hang tight, we'll be back in a flash.</p>
  <p><strong>Estimated Time</strong><br>Most upgrades finish within 30-60 minutes. Thank you for your patience.</p>
</div>
</body>
</html>
"""


def render_blocked(decision: GuardDecision) -> str:
    message = decision.message or "Suspicious traffic pattern detected from this device."
    return BLOCKED_TEMPLATE.format(
        app_name=escape(settings.APP_NAME),
        message=escape(message),
        remaining=int(decision.remaining_seconds),
        countdown=escape(decision.countdown),
    )


def render_maintenance() -> str:
    return MAINTENANCE_TEMPLATE.format(app_name=escape(settings.APP_NAME))
