"""
Persistence hand-off for generated apps.

The Orchestrator hands a finished app to an AppRepository and gets back an
id and a preview location. FileAppStore is the bundled implementation: one
directory per app holding app.json (record metadata) and index.html (the
generated code).
"""

import asyncio
import hashlib
import json
import os
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol

from matura.logging_utils import get_logger

logger = get_logger(__name__)

DEFAULT_APP_NAME = "Generated App"
MAX_APP_NAME_LENGTH = 30


@dataclass(frozen=True)
class AppRecord:
    """Everything needed to re-open a generated app."""
    name: str
    description: str
    source_idea: str
    schema: dict[str, Any]
    generated_code: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AppRecord":
        return cls(
            name=data.get("name", DEFAULT_APP_NAME),
            description=data.get("description", ""),
            source_idea=data.get("source_idea", ""),
            schema=data.get("schema", {}),
            generated_code=data.get("generated_code", ""),
        )


@dataclass(frozen=True)
class SaveReceipt:
    """Identifier and preview location of a saved app."""
    app_id: str
    preview_url: str
    saved_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @classmethod
    def for_app(cls, app_id: str) -> "SaveReceipt":
        return cls(app_id=app_id, preview_url=f"/preview/{app_id}")

    def to_dict(self) -> dict:
        return asdict(self)


class AppRepository(Protocol):
    """External save operation the Orchestrator hands finished apps to."""

    async def save(self, record: AppRecord) -> SaveReceipt:
        ...


def generate_app_name(idea: str) -> str:
    """
    Derive a display name from the user's idea.

    Takes the first sentence, strips symbols and cuts it to 30 characters.
    """
    if not idea or not idea.strip():
        return DEFAULT_APP_NAME

    first_sentence = re.split(r"[。．.!！?？\n]", idea.strip(), maxsplit=1)[0]
    cleaned = re.sub(r"[^\w\s]", "", first_sentence)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    if not cleaned:
        return DEFAULT_APP_NAME

    return cleaned[:MAX_APP_NAME_LENGTH].strip()


class FileAppStore:
    """
    Stores generated apps on disk.

    Usage:
        store = FileAppStore(config.paths.apps_dir)
        receipt = await store.save(record)

        record = store.load(receipt.app_id)
        for app_id, record in store.list_apps(limit=10):
            print(app_id, record.name)
    """

    def __init__(self, apps_dir: str):
        """
        Initialize FileAppStore.

        Args:
            apps_dir: Base directory for all saved apps. Created by the
                first save.
        """
        self.apps_dir = apps_dir

    def _generate_app_id(self) -> str:
        """Generate unique app ID."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        suffix = hashlib.md5(str(datetime.now().timestamp()).encode()).hexdigest()[:6]
        app_id = f"{timestamp}_{suffix}"
        while os.path.exists(os.path.join(self.apps_dir, app_id)):
            suffix = hashlib.md5(f"{app_id}{suffix}".encode()).hexdigest()[:6]
            app_id = f"{timestamp}_{suffix}"
        return app_id

    async def save(self, record: AppRecord) -> SaveReceipt:
        """Write the record without blocking the event loop."""
        return await asyncio.to_thread(self._save_sync, record)

    def _save_sync(self, record: AppRecord) -> SaveReceipt:
        app_id = self._generate_app_id()
        app_dir = os.path.join(self.apps_dir, app_id)
        os.makedirs(app_dir)

        receipt = SaveReceipt.for_app(app_id)
        data = {
            "app_id": app_id,
            "saved_at": receipt.saved_at,
            **record.to_dict(),
        }
        with open(os.path.join(app_dir, "app.json"), "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        with open(os.path.join(app_dir, "index.html"), "w", encoding="utf-8") as f:
            f.write(record.generated_code)

        logger.info(f"Saved app {app_id} ({record.name})")
        return receipt

    def load(self, app_id: str) -> Optional[AppRecord]:
        """
        Load a saved app by ID.

        Returns:
            AppRecord or None if not found.
        """
        app_file = os.path.join(self.apps_dir, app_id, "app.json")
        if not os.path.exists(app_file):
            return None

        with open(app_file, encoding="utf-8") as f:
            data = json.load(f)

        return AppRecord.from_dict(data)

    def list_apps(self, limit: int | None = None) -> list[tuple[str, AppRecord]]:
        """
        List saved apps, newest first.

        Args:
            limit: Maximum number of apps to return.
        """
        apps = []

        if not os.path.exists(self.apps_dir):
            return apps

        for app_id in sorted(os.listdir(self.apps_dir), reverse=True):
            record = self.load(app_id)
            if record is None:
                continue
            apps.append((app_id, record))
            if limit and len(apps) >= limit:
                break

        return apps
