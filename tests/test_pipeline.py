"""Integration tests for the full agent flow against a local fake API"""
import io
import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from logcore import setup_logging, validate_log_format
from mkagent.agent import start_agent
from mkagent.config import APIKEY_ENV, load_config


class FakeApi:
    """Records registrations and metric posts; can be told to fail posts"""

    def __init__(self):
        self.hosts = []
        self.batches = []
        self.fail_posts = 0
        self.api_keys = set()


def make_handler(api):
    class Handler(BaseHTTPRequestHandler):
        def log_message(self, format, *args):
            pass

        def _reply(self, status, body):
            data = json.dumps(body).encode()
            self.send_response(status)
            self.send_header('Content-Type', 'application/json')
            self.send_header('Content-Length', str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def do_POST(self):
            length = int(self.headers.get('Content-Length', 0))
            payload = json.loads(self.rfile.read(length) or b'null')
            api.api_keys.add(self.headers.get('X-Api-Key'))

            if self.path == '/api/v0/hosts':
                api.hosts.append(payload)
                self._reply(200, {'id': f'host{len(api.hosts)}'})
            elif self.path == '/api/v0/tsdb':
                if api.fail_posts:
                    api.fail_posts -= 1
                    self._reply(503, {'error': 'unavailable'})
                    return
                api.batches.append(payload)
                self._reply(200, {'success': True})
            else:
                self._reply(404, {'error': 'not found'})

    return Handler


@pytest.fixture(autouse=True)
def no_apikey_env(monkeypatch):
    monkeypatch.delenv(APIKEY_ENV, raising=False)


@pytest.fixture
def log_stream():
    """JSON logs of the mkagent logger tree, restored afterwards"""
    stream = io.StringIO()
    setup_logging('mkagent', level='INFO', stream=stream)
    yield stream
    logger = logging.getLogger('mkagent')
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def fake_api():
    api = FakeApi()
    server = HTTPServer(('127.0.0.1', 0), make_handler(api))
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    api.base = f'http://127.0.0.1:{server.server_address[1]}/'
    yield api
    server.shutdown()
    server.server_close()


@pytest.fixture
def config_path(tmp_path, fake_api):
    path = tmp_path / 'mkagent.conf'
    path.write_text(
        '[agent]\n'
        'apikey = integration-key\n'
        f'apibase = {fake_api.base}\n'
        'interval = 0.5\n'
        'collector_timeout = 2\n'
        'send_retries = 1\n'
        f'id_file = {tmp_path / "state" / "id"}\n'
        f'dropped_dir = {tmp_path / "dropped"}\n'
        'collectors = loadavg, memory\n'
    )
    return path


@pytest.mark.integration
def test_register_collect_and_deliver(config_path, fake_api, tmp_path):
    """
    Test complete agent flow:
    1. First start registers the host and persists its identity
    2. Cycles post metrics tagged with that identity
    3. A restart reuses the identity without registering again
    """
    config = load_config(config_path)

    agent = start_agent(config)
    assert agent.host_id == 'host1'
    assert (tmp_path / 'state' / 'id').read_text() == 'host1'
    assert fake_api.hosts[0]['meta']['agent-name'] == 'mkagent'

    agent.run(max_cycles=2, handle_signals=False)

    assert len(fake_api.batches) == 2
    for batch in fake_api.batches:
        names = {v['name'] for v in batch}
        assert {'loadavg1', 'loadavg5', 'loadavg15', 'memory.total'} <= names
        assert {v['hostId'] for v in batch} == {'host1'}
        assert len({v['time'] for v in batch}) == 1
    assert fake_api.api_keys == {'integration-key'}

    restarted = start_agent(load_config(config_path))
    assert restarted.host_id == 'host1'
    assert len(fake_api.hosts) == 1


@pytest.mark.integration
def test_failed_delivery_is_dropped_and_loop_continues(config_path, fake_api, tmp_path):
    """A rejected batch is recorded locally and the next cycle still delivers"""
    agent = start_agent(load_config(config_path))
    fake_api.fail_posts = 1

    agent.run(max_cycles=2, handle_signals=False)

    assert len(fake_api.batches) == 1
    dropped = list((tmp_path / 'dropped').glob('dropped-*.jsonl'))
    assert len(dropped) == 1
    record = json.loads(dropped[0].read_text().splitlines()[0])
    assert '503' in record['reason']
    assert {v['hostId'] for v in record['values']} == {'host1'}


@pytest.mark.integration
def test_agent_logs_are_structured(config_path, fake_api, log_stream):
    """Every line the agent writes is a JSON record tagged with the host id"""
    agent = start_agent(load_config(config_path))
    agent.run(max_cycles=1, handle_signals=False)

    lines = log_stream.getvalue().splitlines()
    assert lines
    assert all(validate_log_format(line) for line in lines)

    records = [json.loads(line) for line in lines]
    cycle = [r for r in records if r['message'].startswith('Cycle complete')]
    assert len(cycle) == 1
    assert cycle[0]['context']['host_id'] == 'host1'
    assert cycle[0]['context']['delivered'] is True
