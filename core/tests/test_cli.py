"""Tests for the llm-fiber command line."""

import argparse
import json

import httpx
import pytest

from llm_fiber import cli, config
from llm_fiber.llm.provider import ChatCompletionsProvider
from llm_fiber.runtime.engine import BuiltinEngine


def sse(*payloads) -> bytes:
    frames = [f"data: {json.dumps(p)}\n\n" for p in payloads]
    frames.append("data: [DONE]\n\n")
    return "".join(frames).encode()


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "FIBER_CONFIG_FILE", tmp_path / "configuration.json")
    monkeypatch.delenv(config.BASE_URL_ENV_VAR, raising=False)
    monkeypatch.delenv(config.MODEL_ENV_VAR, raising=False)
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)


@pytest.fixture
def proxy(monkeypatch):
    """Route the CLI's engine through a MockTransport; returns the captured request bodies."""
    requests: list[dict] = []
    bodies: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append({"headers": request.headers, "body": json.loads(request.content)})
        return httpx.Response(200, content=bodies.pop(0))

    def make_engine(engine_config):
        provider = ChatCompletionsProvider(
            engine_config.base_url,
            engine_config.headers,
            transport=httpx.MockTransport(handler),
        )
        return BuiltinEngine(engine_config, provider=provider)

    monkeypatch.setattr(cli, "BuiltinEngine", make_engine)
    return requests, bodies


class TestParseKeyValues:
    def test_plain(self):
        assert cli._parse_key_values(["a=1", "b=x=y"]) == {"a": "1", "b": "x=y"}

    def test_json_values(self):
        parsed = cli._parse_key_values(
            ["temperature=0.2", 'stop=["\\n"]', "name=bob"], parse_json=True
        )
        assert parsed == {"temperature": 0.2, "stop": ["\n"], "name": "bob"}

    @pytest.mark.parametrize("pair", ["novalue", "=value"])
    def test_rejects_malformed(self, pair):
        with pytest.raises(argparse.ArgumentTypeError):
            cli._parse_key_values([pair])


class TestParser:
    def test_chat_arguments(self):
        args = cli.build_parser().parse_args(
            [
                "--log-level",
                "DEBUG",
                "chat",
                "hello",
                "--model",
                "m",
                "--header",
                "x-a=1",
                "--header",
                "x-b=2",
                "--max-usd",
                "0.5",
                "--json",
            ]
        )
        assert args.log_level == "DEBUG"
        assert args.prompt == "hello"
        assert args.header == ["x-a=1", "x-b=2"]
        assert args.max_usd == 0.5
        assert args.max_prompt_tokens is None
        assert args.json is True

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestMain:
    def test_streams_tokens_to_stdout(self, proxy, capsys):
        requests, bodies = proxy
        bodies.append(
            sse(
                {"choices": [{"delta": {"content": "Par"}}]},
                {"choices": [{"delta": {"content": "is"}}]},
            )
        )

        code = cli.main(
            [
                "chat",
                "Capital of France?",
                "--system",
                "Be terse",
                "--base-url",
                "http://proxy.test",
                "--header",
                "authorization=Bearer sk-test",
                "--param",
                "temperature=0",
            ]
        )

        assert code == 0
        assert capsys.readouterr().out == "Paris\n"
        (request,) = requests
        assert request["headers"]["authorization"] == "Bearer sk-test"
        assert request["body"]["temperature"] == 0
        assert request["body"]["messages"] == [
            {"role": "system", "content": "Be terse"},
            {"role": "user", "content": "Capital of France?"},
        ]

    def test_json_output(self, proxy, capsys):
        _, bodies = proxy
        bodies.append(sse({"choices": [{"delta": {"content": "hi"}}]}))

        code = cli.main(["chat", "hello", "--base-url", "http://proxy.test", "--json"])

        assert code == 0
        lines = capsys.readouterr().out.splitlines()
        assert [json.loads(line) for line in lines] == [
            {"t": "token", "c": "hi"},
            {"t": "status", "p": "done"},
        ]

    def test_budget_exceeded_stops_run(self, proxy, capsys):
        _, bodies = proxy
        bodies.append(
            sse(
                {"choices": [{"delta": {"content": "a"}}]},
                {"choices": [], "usage": {"prompt_tokens": 50}},
                {"choices": [{"delta": {"content": "b"}}]},
            )
        )

        code = cli.main(
            ["chat", "hello", "--base-url", "http://proxy.test", "--max-prompt-tokens", "10"]
        )

        assert code == 1
        captured = capsys.readouterr()
        assert "b" not in captured.out
        assert "[budget]" in captured.err

    def test_provider_error_exit_code(self, monkeypatch, capsys):
        def failing(engine_config):
            provider = ChatCompletionsProvider(
                engine_config.base_url,
                transport=httpx.MockTransport(lambda r: httpx.Response(401, content=b"bad key")),
            )
            return BuiltinEngine(engine_config, provider=provider)

        monkeypatch.setattr(cli, "BuiltinEngine", failing)
        code = cli.main(["chat", "hello", "--base-url", "http://proxy.test"])

        assert code == 1
        assert "(auth)" in capsys.readouterr().err

    def test_missing_base_url(self, capsys):
        assert cli.main(["chat", "hello"]) == 2
        assert "No base URL configured" in capsys.readouterr().err
