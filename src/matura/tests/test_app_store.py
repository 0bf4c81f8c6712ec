"""
Tests for app_store.py module.

Tests:
- generate_app_name
- FileAppStore save/load/list
"""

import json
import os

import pytest

from matura.app_store import AppRecord, FileAppStore, SaveReceipt, generate_app_name

from conftest import CODE_HTML


def make_record(name="予約管理"):
    return AppRecord(
        name=name,
        description="クリニックの予約管理",
        source_idea="病院の診療予約システムを作りたい",
        schema={"table_name": "appointments", "columns": []},
        generated_code=CODE_HTML,
    )


# =============================================================================
# Test generate_app_name
# =============================================================================

class TestGenerateAppName:
    """Tests for generate_app_name."""

    def test_first_sentence(self):
        assert generate_app_name("家計簿アプリを作りたい。毎月の支出を見たい。") == "家計簿アプリを作りたい"

    def test_strips_symbols(self):
        assert generate_app_name("「ペット」日記★アプリ!") == "ペット日記アプリ"

    def test_truncates(self):
        assert len(generate_app_name("あ" * 50)) == 30

    @pytest.mark.parametrize("idea", ["", "   ", "★★★"])
    def test_default_name(self, idea):
        assert generate_app_name(idea) == "Generated App"


# =============================================================================
# Test FileAppStore
# =============================================================================

class TestFileAppStore:
    """Tests for FileAppStore."""

    @pytest.mark.asyncio
    async def test_save_writes_files(self, temp_dir):
        store = FileAppStore(os.path.join(temp_dir, "apps"))

        receipt = await store.save(make_record())

        assert isinstance(receipt, SaveReceipt)
        assert receipt.preview_url == f"/preview/{receipt.app_id}"
        app_dir = os.path.join(store.apps_dir, receipt.app_id)
        with open(os.path.join(app_dir, "index.html"), encoding="utf-8") as f:
            assert f.read() == CODE_HTML
        with open(os.path.join(app_dir, "app.json"), encoding="utf-8") as f:
            data = json.load(f)
        assert data["app_id"] == receipt.app_id
        assert data["name"] == "予約管理"

    @pytest.mark.asyncio
    async def test_load_round_trip(self, temp_dir):
        store = FileAppStore(temp_dir)
        record = make_record()

        receipt = await store.save(record)

        assert store.load(receipt.app_id) == record

    def test_load_missing(self, temp_dir):
        assert FileAppStore(temp_dir).load("nope") is None

    @pytest.mark.asyncio
    async def test_directory_created_on_first_save(self, temp_dir):
        apps_dir = os.path.join(temp_dir, "nested", "apps")
        store = FileAppStore(apps_dir)

        assert not os.path.exists(apps_dir)
        assert store.list_apps() == []

        receipt = await store.save(make_record("one"))

        assert os.path.isdir(os.path.join(apps_dir, receipt.app_id))

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, temp_dir):
        store = FileAppStore(temp_dir)
        first = await store.save(make_record("one"))
        second = await store.save(make_record("two"))
        assert first.app_id != second.app_id

    @pytest.mark.asyncio
    async def test_list_apps_with_limit(self, temp_dir):
        store = FileAppStore(temp_dir)
        for name in ("one", "two", "three"):
            await store.save(make_record(name))
        os.makedirs(os.path.join(temp_dir, "not_an_app"))

        assert len(store.list_apps()) == 3
        assert len(store.list_apps(limit=2)) == 2
