"""
Storage utility.

File I/O helpers for per-run shortcut records and run summaries.
"""

import json
import os
import logging
from typing import Dict, List, Optional

from src.models.item import ShortcutRecord

logger = logging.getLogger(__name__)


class StorageManager:
    """
    Manages file I/O for run data.

    Handles:
    - Run records (data/runs/<label>.json)
    """

    def __init__(self, data_root: str):
        """
        Initialize storage manager.

        Args:
            data_root: Root data directory (e.g., /path/to/data)
        """
        self.data_root = data_root
        self.runs_dir = os.path.join(data_root, "runs")

        os.makedirs(self.runs_dir, exist_ok=True)

        logger.debug(f"Initialized StorageManager with data_root={data_root}")

    def save_run(self, label: str, records: List[ShortcutRecord], summary: Optional[Dict] = None) -> str:
        """
        Save the records created by one run.

        Args:
            label: Run label (used as file name)
            records: Shortcut records created during the run
            summary: Optional run summary (page results, statistics)

        Returns:
            Path of the written file
        """
        filepath = os.path.join(self.runs_dir, f"{label}.json")
        data = {
            "label": label,
            "records": [r.to_dict() for r in records],
            "summary": summary or {}
        }

        try:
            with open(filepath, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            logger.info(f"Saved {len(records)} records to {filepath}")
        except OSError as e:
            logger.error(f"Failed to save run {label}: {e}")
            raise
        return filepath

    def load_run(self, label: str) -> Optional[List[ShortcutRecord]]:
        """
        Load the records of one run.

        Returns:
            Records, or None if the run file doesn't exist or is unreadable
        """
        filepath = os.path.join(self.runs_dir, f"{label}.json")

        if not os.path.exists(filepath):
            logger.debug(f"No run file found for {label}")
            return None

        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return [ShortcutRecord.from_dict(r) for r in data.get("records", [])]
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            logger.error(f"Failed to load run {label}: {e}")
            return None

    def get_all_run_labels(self) -> List[str]:
        """
        Returns:
            Sorted run labels that have record files
        """
        labels = []
        for filename in os.listdir(self.runs_dir):
            if filename.endswith('.json'):
                labels.append(filename[:-len('.json')])
        return sorted(labels)

    def load_all_records(self) -> List[ShortcutRecord]:
        """Records of every stored run, oldest run first."""
        records = []
        for label in self.get_all_run_labels():
            records.extend(self.load_run(label) or [])
        return records
