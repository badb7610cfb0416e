from datetime import datetime
from typing import Dict, List

import requests


def build_summary_message(summaries: List[Dict], dry_run: bool, run_id: str) -> Dict:
    total = sum(s["total"] for s in summaries)
    with_account = sum(s["with_account"] for s in summaries)
    mode = "DRY RUN" if dry_run else "LIVE"
    fields = [
        {"type": "mrkdwn", "text": f"*{s['source']}:* {s['with_account']}/{s['total']} ({s['pct_with_account']}%)"}
        for s in summaries
    ]
    return {
        "text": f"Reconciliation {run_id} ({mode}): {with_account}/{total} records carry an account code",
        "blocks": [
            {"type": "header", "text": {"type": "plain_text", "text": f"Reconciliation run ({mode})"}},
            # Slack caps a section at 10 fields
            *[{"type": "section", "fields": fields[i:i + 10]} for i in range(0, len(fields), 10)],
            {
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": f"{run_id} · {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"}],
            },
        ],
    }


def send_run_summary(webhook_url: str, summaries: List[Dict], dry_run: bool, run_id: str) -> bool:
    """Post the scorecard to Slack. Failures are reported, never raised."""
    if not webhook_url:
        return False
    try:
        response = requests.post(webhook_url, json=build_summary_message(summaries, dry_run, run_id), timeout=10)
        response.raise_for_status()
    except requests.RequestException as e:
        print(f"  ⚠️ Slack notification failed: {e}")
        return False
    return True
