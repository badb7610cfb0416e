import os
import sys
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import requests

from notifier import build_summary_message, send_run_summary

SUMMARIES = [
    {"source": "stripe-eur", "total": 10, "with_account": 9, "pct_with_account": 90.0},
    {"source": "bankinter-eur", "total": 4, "with_account": 1, "pct_with_account": 25.0},
]


def test_message_totals():
    message = build_summary_message(SUMMARIES, dry_run=True, run_id="run-1")
    assert message["text"] == "Reconciliation run-1 (DRY RUN): 10/14 records carry an account code"
    assert len(message["blocks"][1]["fields"]) == 2


@patch('notifier.requests.post')
def test_send_posts_to_webhook(mock_post):
    mock_post.return_value = MagicMock(status_code=200)
    assert send_run_summary("https://hooks.example.com/x", SUMMARIES, False, "run-1")
    assert mock_post.call_args.args[0] == "https://hooks.example.com/x"


@patch('notifier.requests.post')
def test_send_failure_is_reported_not_raised(mock_post):
    mock_post.side_effect = requests.ConnectionError("down")
    assert send_run_summary("https://hooks.example.com/x", SUMMARIES, False, "run-1") is False
    assert send_run_summary("", SUMMARIES, False, "run-1") is False
