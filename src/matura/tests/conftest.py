"""
Shared test fixtures and utilities for matura tests.

This module provides:
- A scripted fake completion client
- Canned completion texts for every phase
- Config fixtures with tiny timeouts
- Temporary directory fixtures
"""

import asyncio
import json
import os
import shutil
import sys
import tempfile
from dataclasses import dataclass, field

import pytest

# Make the src/ layout importable without installing
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from matura.config import AppConfig, LLMConfig, PathConfig, TimeoutConfig


# =============================================================================
# Canned Completions
# =============================================================================

INSIGHT = {
    "vision": "病院の予約業務をオンライン化し、待ち時間を30分短縮する",
    "target": "地域のクリニックに通う患者と受付スタッフ",
    "features": ["オンライン診療予約", "予約リマインド通知", "患者情報管理"],
    "value": "電話予約の手間が減るため、受付の業務負担と患者の待ち時間を減らせる",
    "motivation": "受付の電話対応に毎日2時間かかっているので改善したい",
}

UI_STYLE = {
    "id": "clean-medical",
    "name": "Clean Medical",
    "description": "清潔感のある青を基調にした安心感のあるデザイン",
    "category": "corporate",
    "colors": {
        "primary": "#2563eb",
        "secondary": "#dbeafe",
        "accent": "#1d4ed8",
        "background": "#f8fafc",
        "text": "#1e293b",
    },
    "typography": {"heading": "font-bold", "body": "font-normal"},
    "spacing": "comfortable",
    "personality": ["信頼感", "清潔", "落ち着き"],
}

UX_DESIGN = {
    "layout": "サイドバー付きダッシュボード",
    "colorScheme": "ブルー系ライトテーマ",
    "typography": "Noto Sans JP",
    "navigation": "左サイドバー",
    "components": ["予約カレンダー", "患者一覧", "予約フォーム"],
    "interactions": ["ドラッグで予約変更", "ホバーで詳細表示"],
}

CODE_HTML = "<!DOCTYPE html>\n<html lang=\"ja\">\n<body><h1>予約管理</h1></body>\n</html>"

RELEASE = {
    "title": "クリニック予約",
    "summary": "クリニックの予約を24時間受け付けるWebアプリ",
    "platform": "web",
    "features": ["オンライン予約", "リマインド通知"],
    "monetization": "月額サブスクリプション",
}


def as_json(data: dict) -> str:
    return json.dumps(data, ensure_ascii=False)


def phase_responses() -> list[str]:
    """Completion texts for InsightRefine through ReleaseBoard, in order."""
    return [
        as_json(INSIGHT),
        as_json(UI_STYLE),
        as_json(UX_DESIGN),
        f"```html\n{CODE_HTML}\n```",
        as_json(RELEASE),
    ]


# =============================================================================
# Fake Completion Client
# =============================================================================

@dataclass
class RecordedCall:
    directive: str
    history: list[dict]
    options: object


class FakeCompletionClient:
    """
    Scripted CompletionClient.

    Responses are consumed in order; an Exception instance is raised instead
    of returned. When `gate` is set, every call waits on it, which keeps a
    request in flight until the test releases (or never releases) it.
    """

    def __init__(self, responses: list | None = None, default: str = "了解しました。"):
        self.responses = list(responses or [])
        self.default = default
        self.calls: list[RecordedCall] = []
        self.started = asyncio.Event()
        self.gate: asyncio.Event | None = None
        self.cancelled = 0
        self.closed = False

    def block(self) -> asyncio.Event:
        self.gate = asyncio.Event()
        return self.gate

    async def complete(self, directive, history, options):
        self.calls.append(RecordedCall(directive, list(history), options))
        self.started.set()
        try:
            if self.gate is not None:
                await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled += 1
            raise

        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, BaseException):
            raise response
        return response

    async def close(self):
        self.closed = True


# =============================================================================
# Fixtures: Temporary Files and Directories
# =============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory that's cleaned up after the test."""
    tmpdir = tempfile.mkdtemp(prefix="matura_test_")
    yield tmpdir
    shutil.rmtree(tmpdir, ignore_errors=True)


# =============================================================================
# Fixtures: Configuration
# =============================================================================

@pytest.fixture
def mock_llm_config():
    """LLM config that never waits between retries."""
    return LLMConfig(
        base_url="http://localhost:9999/v1",
        model="test-model",
        max_retries=3,
        retry_base_delay=0.0,
    )


@pytest.fixture
def app_config(temp_dir, mock_llm_config):
    """AppConfig rooted in a temp dir, without app persistence."""
    return AppConfig(
        paths=PathConfig.from_defaults(temp_dir),
        llm=mock_llm_config,
        timeouts=TimeoutConfig(chat_ms=2_000, structured_ms=2_000, code_ms=2_000),
        persist_apps=False,
    )


@pytest.fixture
def short_timeout_config(app_config):
    """Same as app_config but every request times out after 50ms."""
    return AppConfig(
        paths=app_config.paths,
        llm=app_config.llm,
        timeouts=TimeoutConfig(chat_ms=50, structured_ms=50, code_ms=50),
        persist_apps=False,
    )


@pytest.fixture
def fake_client():
    return FakeCompletionClient()
