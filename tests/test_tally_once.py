import json

import httpx
import pytest

from services.awards_api.client import AwardsApiClient
from scripts import tally_once

PAYLOADS = {
    '/api/votes/all': [
        {'id': 'v1', 'user_id': 'u1', 'category_id': 'C1', 'nominee_id': 'A',
         'created_at': '2025-03-10T12:00:00Z'},
    ],
    '/api/categories': [{'id': 'C1', 'name': 'Song of the Year'}],
    '/api/nominees': [{'id': 'A', 'name': 'Artist A', 'category_ids': ['C1']}],
    '/api/profile': [{'id': 'u1', 'location': 'Harare'}],
}


def handler(request):
    if request.url.path not in PAYLOADS:
        return httpx.Response(500)
    return httpx.Response(200, json=PAYLOADS[request.url.path])


@pytest.fixture
def mock_api(monkeypatch):
    for key in ('AWARDS_API_URL', 'AWARDS_API_TOKEN', 'AWARDS_STATE_PUBLISH_ROOT'):
        monkeypatch.delenv(key, raising=False)

    def build_client(cfg):
        return AwardsApiClient(base_url=cfg.api.base_url, transport=httpx.MockTransport(handler))

    monkeypatch.setattr(tally_once, 'build_client', build_client)


def test_prints_results(mock_api, capsys):
    assert tally_once.main(['--api-url', 'http://awards.test/api']) == 0
    doc = json.loads(capsys.readouterr().out)
    assert doc['generation'] == 1
    assert doc['category_standings'][0]['total_votes'] == 1


def test_writes_output_file(mock_api, tmp_path):
    target = tmp_path / 'results.json'
    assert tally_once.main(['--api-url', 'http://awards.test/api', '--output', str(target)]) == 0
    assert json.loads(target.read_text(encoding='utf-8'))['locations'][0]['location'] == 'Harare'


def test_failed_cycle_exit_code(mock_api, capsys):
    assert tally_once.main(['--api-url', 'http://awards.test/other']) == 1
    assert 'HTTP 500' in capsys.readouterr().err


def test_invalid_top_n(mock_api):
    assert tally_once.main(['--top-n', '0']) == 2
