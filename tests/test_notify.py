import logging
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from slack_sdk.errors import SlackApiError

from mysql2pg.models import Inconsistency, StageStat
from mysql2pg.notify import SlackNotifier
from mysql2pg.state import RunState


@pytest.fixture(autouse=True)
def no_slack_env(monkeypatch):
    for key in ('SLACK_BOT_TOKEN', 'SLACK_CHANNEL_ID', 'SLACK_CHANNEL'):
        monkeypatch.delenv(key, raising=False)


def finished_state():
    state = RunState()
    state.add_tasks(4)
    for _ in range(4):
        state.complete_task()
    start = datetime(2024, 1, 1)
    state.add_stat(StageStat(name='Data', start=start, end=start + timedelta(seconds=3), object_count=2))
    return state


def all_text(blocks):
    parts = []
    for block in blocks:
        if 'text' in block:
            parts.append(block['text']['text'])
        for item in block.get('fields', []):
            parts.append(item['text'])
    return '\n'.join(parts)


def test_summary_is_posted():
    client = MagicMock()
    SlackNotifier(client=client).send_summary(finished_state(), 'shop')

    client.chat_postMessage.assert_called_once()
    kwargs = client.chat_postMessage.call_args.kwargs
    assert kwargs['channel'] == '#db-migration'
    text = all_text(kwargs['blocks'])
    assert 'SUCCEEDED' in text
    assert '4/4' in text
    assert 'Data: 2 objects in 3.0s' in text


def test_mismatches_and_error_are_reported(monkeypatch):
    monkeypatch.setenv('SLACK_CHANNEL_ID', 'C123')
    state = finished_state()
    for i in range(12):
        state.add_inconsistency(Inconsistency(table=f't{i}', source_count=1000, target_count=999))

    notifier = SlackNotifier(client=MagicMock())
    text = all_text(notifier.build_blocks(state, 'shop', error='boom'))

    assert notifier.slack_channel == 'C123'
    assert 'FAILED' in text
    assert '*t0*: source 1,000, target 999' in text
    assert 't11' not in text
    assert '2 more' in text
    assert 'boom' in text


def test_warning_status_for_failed_tables():
    state = finished_state()
    state.add_failed_table('orders')
    text = all_text(SlackNotifier(client=MagicMock()).build_blocks(state, 'shop'))
    assert 'COMPLETED WITH WARNINGS' in text


def test_without_token_nothing_is_sent(caplog):
    notifier = SlackNotifier()
    assert notifier.client is None

    with caplog.at_level(logging.WARNING, logger='mysql2pg'):
        notifier.send_summary(finished_state(), 'shop')
    assert 'skipping notification' in caplog.text


def test_slack_api_error_is_logged(caplog):
    client = MagicMock()
    client.chat_postMessage.side_effect = SlackApiError('failed', {'error': 'channel_not_found'})

    with caplog.at_level(logging.ERROR, logger='mysql2pg'):
        SlackNotifier(client=client).send_summary(finished_state(), 'shop')
    assert 'channel_not_found' in caplog.text
