import asyncio
import json
import re
from datetime import datetime, timezone

import httpx
import pytest

from daily_bugle import generator
from daily_bugle.config import AppConfig
from daily_bugle.errors import UpstreamError
from daily_bugle.generator import (
    date_folder,
    effective_system_prompt,
    generate_all,
    generate_section,
    render_article_html,
)
from daily_bugle.models import GenerationResult


def make_section(idx: int, **overrides) -> dict:
    base = {
        "id": f"section{idx}",
        "name": f"Section {idx}",
        "reporter": f"Reporter {idx}",
        "systemPrompt": f"Prompt {idx}",
        "sectionPrompt": f"Write article {idx}",
    }
    base.update(overrides)
    return base


def make_config(count: int = 2, **overrides) -> AppConfig:
    payload = {
        "ollamaConfig": {
            "baseUrl": "http://localhost:11434",
            "model": "test-model",
            "temperature": 0.8,
        },
        "systemPrompt": "Global prompt",
        "sections": [make_section(i) for i in range(1, count + 1)],
    }
    payload.update(overrides)
    return AppConfig.model_validate(payload)


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def echo_handler(calls):
    def handler(request):
        body = json.loads(request.content)
        calls.append(body)
        return httpx.Response(200, json={"response": f"Article for {body['prompt']}"})

    return handler


def test_effective_prompt_concatenates_global_prompt():
    config = make_config(systemPrompt="Global system prompt")
    section = config.sections[0]
    assert effective_system_prompt(section, config) == "Global system prompt Prompt 1"


@pytest.mark.parametrize("global_prompt", [None, ""])
def test_effective_prompt_without_global_prompt(global_prompt):
    config = make_config(systemPrompt=global_prompt)
    assert effective_system_prompt(config.sections[0], config) == "Prompt 1"


def test_generate_section_sends_combined_prompt_and_copies_identity():
    calls = []
    config = make_config(systemPrompt="Global system prompt")

    async def scenario():
        async with mock_client(echo_handler(calls)) as client:
            return await generate_section(config.sections[0], config, client=client)

    result = asyncio.run(scenario())

    assert calls[0]["system"] == "Global system prompt Prompt 1"
    assert calls[0]["prompt"] == "Write article 1"
    assert result.id == "section1"
    assert result.name == "Section 1"
    assert result.reporter == "Reporter 1"
    assert result.content == "Article for Write article 1"
    assert result.timestamp.tzinfo is not None


def test_date_folder_is_filesystem_safe_utc():
    instant = datetime(2024, 1, 15, 14, 30, 59, 123000, tzinfo=timezone.utc)
    assert date_folder(instant) == "2024-01-15_14-30"


def test_render_article_html_escapes_generated_markup():
    result = GenerationResult(
        id="tech",
        name="Tech & Science",
        reporter="Peter Parker",
        content="<script>alert('x')</script>",
        timestamp=datetime(2024, 1, 15, 14, 30, tzinfo=timezone.utc),
    )
    page = render_article_html(result)

    assert page.startswith("<!DOCTYPE html>")
    assert "<title>Tech &amp; Science - Daily Bugle</title>" in page
    assert "By Peter Parker" in page
    assert "<script>" not in page
    assert "&lt;script&gt;" in page


def test_generate_all_writes_articles_and_index(tmp_path):
    calls = []
    config = make_config(count=3)

    async def scenario():
        async with mock_client(echo_handler(calls)) as client:
            return await generate_all(config, tmp_path, client=client)

    index = asyncio.run(scenario())

    assert len(calls) == 3
    html_files = sorted(tmp_path.glob("sections/*/*.html"))
    assert len(html_files) == 3
    for path in html_files:
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}_\d{2}-\d{2}\.html", path.name)

    written = json.loads((tmp_path / "news.json").read_text(encoding="utf-8"))
    assert [item["id"] for item in written["items"]] == ["section1", "section2", "section3"]
    assert written["generated"]
    assert [item.id for item in index.items] == ["section1", "section2", "section3"]

    first = written["items"][0]
    assert first["url"].startswith("./sections/section1/")
    article = (tmp_path / first["url"][2:]).read_text(encoding="utf-8")
    assert "Section 1" in article
    assert "Reporter 1" in article
    assert "Article for Write article 1" in article
    assert not list(tmp_path.glob(".news-*"))


def test_generate_all_overwrites_index_but_keeps_old_articles(tmp_path):
    old_article = tmp_path / "sections" / "section1" / "2020-01-01_01-00.html"
    old_article.parent.mkdir(parents=True)
    old_article.write_text("old", encoding="utf-8")
    (tmp_path / "news.json").write_text('{"items": [], "generated": "old"}', encoding="utf-8")

    async def scenario():
        async with mock_client(echo_handler([])) as client:
            await generate_all(make_config(count=1), tmp_path, client=client)

    asyncio.run(scenario())

    written = json.loads((tmp_path / "news.json").read_text(encoding="utf-8"))
    assert len(written["items"]) == 1
    assert written["generated"] != "old"
    assert old_article.read_text(encoding="utf-8") == "old"


def test_generate_all_failure_writes_nothing(tmp_path):
    def handler(request):
        body = json.loads(request.content)
        if body["prompt"] == "Write article 2":
            return httpx.Response(503)
        return httpx.Response(200, json={"response": "fine"})

    async def scenario():
        async with mock_client(handler) as client:
            await generate_all(make_config(count=3), tmp_path, client=client)

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.status == 503
    assert not (tmp_path / "news.json").exists()
    assert not list(tmp_path.glob("sections/*/*.html"))


def test_generate_all_runs_sections_concurrently(tmp_path, monkeypatch):
    in_flight = []
    peak = []

    async def fake_generate(system_prompt, user_prompt, ollama_config, client=None):
        in_flight.append(user_prompt)
        peak.append(len(in_flight))
        await asyncio.sleep(0.01)
        in_flight.remove(user_prompt)
        return "text"

    monkeypatch.setattr(generator.ollama, "generate", fake_generate)

    async def scenario():
        async with mock_client(echo_handler([])) as client:
            await generate_all(make_config(count=4), tmp_path, client=client)

    asyncio.run(scenario())
    assert max(peak) == 4


def test_generate_all_cancellation_stops_sections_and_writes_nothing(tmp_path, monkeypatch):
    started = []
    aborted = []

    async def fake_generate(system_prompt, user_prompt, ollama_config, client=None):
        started.append(user_prompt)
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            aborted.append(user_prompt)
            raise
        return "never"

    monkeypatch.setattr(generator.ollama, "generate", fake_generate)

    async def scenario():
        async with mock_client(echo_handler([])) as client:
            task = asyncio.ensure_future(generate_all(make_config(count=2), tmp_path, client=client))
            while len(started) < 2:
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

    asyncio.run(scenario())
    assert sorted(aborted) == ["Write article 1", "Write article 2"]
    assert not (tmp_path / "news.json").exists()
    assert not (tmp_path / "sections").exists()
