"""Tests for the tensorcalc command line."""

import json

import pytest

from tensorcalc import config
from tensorcalc.cli import main
from tensorcalc.errors import InvalidArgumentError


REQUEST = {
    'tensors': [
        {'id': 1, 'inline_data': {'dimensions': [3], 'values': [1, 2, 3]}},
        {'id': 2, 'inline_data': {'dimensions': [3], 'values': [4, 5, 6]}},
        {'id': 3, 'computation': {'dot_multiply': {'sources': [1, 2]}}},
    ],
    'output_tensor_ids': [3],
}


class TestCalculate:
    def test_stdout(self, tmp_path, capsys):
        path = tmp_path / 'req.json'
        path.write_text(json.dumps(REQUEST))
        assert main(['calculate', str(path), '--engine', 'fallback']) == 0
        out = json.loads(capsys.readouterr().out)
        assert out == {'results': [
            {'id': 3, 'inline_data': {'dimensions': [3], 'values': [4.0, 10.0, 18.0]}}]}

    def test_output_file(self, tmp_path):
        path = tmp_path / 'req.json'
        path.write_text(json.dumps(REQUEST))
        out = tmp_path / 'resp.json'
        assert main(['calculate', str(path), '-o', str(out)]) == 0
        assert json.loads(out.read_text())['results'][0]['id'] == 3

    def test_error_exit_code(self, tmp_path, capsys):
        path = tmp_path / 'req.json'
        path.write_text(json.dumps(dict(REQUEST, output_tensor_ids=[5])))
        assert main(['calculate', str(path)]) == 1
        assert capsys.readouterr().err.startswith('NOT_FOUND: tensor 5 could not be computed')

    def test_bad_json(self, tmp_path, capsys):
        path = tmp_path / 'req.json'
        path.write_text('{nope')
        assert main(['calculate', str(path)]) == 1
        assert 'INVALID_ARGUMENT' in capsys.readouterr().err

    def test_missing_file(self, tmp_path):
        assert main(['calculate', str(tmp_path / 'absent.json')]) == 1


def test_engines_lists_fallback(capsys, monkeypatch):
    monkeypatch.setenv('TENSORCALC_ENGINE', 'fallback')
    assert main(['engines']) == 0
    assert '* fallback' in capsys.readouterr().out


class TestConfig:
    def test_defaults(self, monkeypatch):
        for name in ['TENSORCALC_ARENA_BYTES', 'TENSORCALC_THREADS', 'TENSORCALC_ENGINE']:
            monkeypatch.delenv(name, raising=False)
        assert config.arena_bytes() == 256 * 1024 * 1024
        assert config.threads() == 16
        assert config.engine() == 'fallback'

    @pytest.mark.parametrize('raw', ['lots', '0', '-4'])
    def test_invalid_ints(self, monkeypatch, raw):
        monkeypatch.setenv('TENSORCALC_THREADS', raw)
        with pytest.raises(InvalidArgumentError, match='TENSORCALC_THREADS'):
            config.threads()
