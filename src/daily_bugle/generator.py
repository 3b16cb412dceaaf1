"""Section and batch generation.

- generate_section: one Ollama call for one section, tagged with its identity
- generate_all: concurrent fan-out over every section, then articles + news.json

Nothing is written to disk until every section has produced text, so a failed
or cancelled batch leaves the previously published content untouched.
"""

from __future__ import annotations

import asyncio
import html
import json
import logging
import os
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import httpx

from . import ollama
from .config import AppConfig
from .models import GenerationResult, NewsIndex, NewsIndexEntry, Section

logger = logging.getLogger(__name__)

INDEX_FILENAME = "news.json"
SECTIONS_DIRNAME = "sections"

ARTICLE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{name} - Daily Bugle</title>
</head>
<body>
    <article>
        <h2>{name}</h2>
        <p class="byline">By {reporter}</p>
        <div class="content">{content}</div>
        <p class="timestamp">{timestamp}</p>
    </article>
</body>
</html>
"""


def effective_system_prompt(section: Section, config: AppConfig) -> str:
    """Global prompt followed by the section prompt, or the section prompt alone."""
    if config.system_prompt:
        return f"{config.system_prompt} {section.system_prompt}"
    return section.system_prompt


def date_folder(instant: datetime) -> str:
    """Filesystem-safe storage key, e.g. ``2024-01-15_14-30`` (UTC)."""
    return instant.astimezone(timezone.utc).strftime("%Y-%m-%d_%H-%M")


def _display_time(instant: datetime) -> str:
    return instant.astimezone().strftime("%a, %b %d, %Y, %I:%M:%S %p")


def render_article_html(result: GenerationResult) -> str:
    """Minimal article page; generated text is escaped before embedding."""
    return ARTICLE_TEMPLATE.format(
        name=html.escape(result.name),
        reporter=html.escape(result.reporter),
        content=html.escape(result.content),
        timestamp=_display_time(result.timestamp),
    )


async def generate_section(
    section: Section,
    config: AppConfig,
    client: Optional[httpx.AsyncClient] = None,
) -> GenerationResult:
    logger.info("Generating %s by %s...", section.name, section.reporter)
    content = await ollama.generate(
        effective_system_prompt(section, config),
        section.section_prompt,
        config.ollama,
        client=client,
    )
    return GenerationResult(
        id=section.id,
        name=section.name,
        reporter=section.reporter,
        content=content,
        timestamp=datetime.now(timezone.utc),
    )


async def _gather_sections(
    config: AppConfig, client: Optional[httpx.AsyncClient]
) -> List[GenerationResult]:
    tasks = [
        asyncio.ensure_future(generate_section(section, config, client=client))
        for section in config.sections
    ]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        # One failure fails the batch; stop the remaining requests.
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def write_article(public_dir: Path, result: GenerationResult, folder: str) -> NewsIndexEntry:
    section_dir = public_dir / SECTIONS_DIRNAME / result.id
    section_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{folder}.html"
    path = section_dir / filename
    path.write_text(render_article_html(result), encoding="utf-8")
    logger.info("Saved %s to %s", result.name, path)
    return NewsIndexEntry(
        id=result.id,
        name=result.name,
        reporter=result.reporter,
        url=f"./{SECTIONS_DIRNAME}/{result.id}/{filename}",
        timestamp=result.timestamp,
    )


def write_index(public_dir: Path, entries: List[NewsIndexEntry]) -> NewsIndex:
    """Overwrite news.json via a temp file so readers never see a partial index."""
    index = NewsIndex(items=entries, generated=datetime.now(timezone.utc))
    public_dir.mkdir(parents=True, exist_ok=True)
    target = public_dir / INDEX_FILENAME
    fd, tmp_name = tempfile.mkstemp(dir=public_dir, prefix=".news-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(index.model_dump(mode="json"), f, ensure_ascii=False, indent=2)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return index


async def generate_all(
    config: AppConfig,
    public_dir: Path,
    client: Optional[httpx.AsyncClient] = None,
) -> NewsIndex:
    """Generate every section concurrently, then publish articles and the index."""
    logger.info("Starting content generation for %d sections...", len(config.sections))
    started = time.monotonic()

    if client is None:
        async with ollama.build_client(config.ollama) as owned:
            results = await _gather_sections(config, owned)
    else:
        results = await _gather_sections(config, client)

    folder = date_folder(datetime.now(timezone.utc))
    entries = [write_article(public_dir, result, folder) for result in results]
    index = write_index(public_dir, entries)

    logger.info(
        "Content generation complete in %.2fs; generated %d articles",
        time.monotonic() - started,
        len(entries),
    )
    return index
