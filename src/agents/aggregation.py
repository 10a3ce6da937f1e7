"""
Statistics Aggregator.

Read-side view over accumulated shortcut records: totals, per-topic counts,
items linked from more than one index, and CSV export of a run's records.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List

import pandas as pd

from src.models.item import ShortcutRecord

logger = logging.getLogger(__name__)

RECORD_COLUMNS = [
    "target_identity",
    "target_title",
    "target_collection_id",
    "index_node_identity",
    "topic_id",
    "created_at",
    "matched_keywords",
]


@dataclass
class ShortcutStatistics:
    total_collections: int = 0
    total_index_pages: int = 0
    total_shortcuts: int = 0
    shortcuts_by_topic: Dict[str, int] = field(default_factory=dict)
    duplicate_pages: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_collections": self.total_collections,
            "total_index_pages": self.total_index_pages,
            "total_shortcuts": self.total_shortcuts,
            "shortcuts_by_topic": dict(self.shortcuts_by_topic),
            "duplicate_pages": list(self.duplicate_pages)
        }


def records_frame(records: List[ShortcutRecord]) -> pd.DataFrame:
    """Tabulate records, one row per shortcut."""
    rows = [record.to_dict() for record in records]
    if not rows:
        return pd.DataFrame(columns=RECORD_COLUMNS)
    df = pd.DataFrame(rows, columns=RECORD_COLUMNS)
    df["matched_keywords"] = df["matched_keywords"].apply(lambda k: ",".join(k))
    return df


class StatisticsAggregator:
    """
    Computes statistics on demand. Never mutates the records it is given.
    """

    def summarize(
        self,
        records: List[ShortcutRecord],
        total_collections: int = 0,
        total_index_pages: int = 0
    ) -> ShortcutStatistics:
        """
        Args:
            records: Accumulated shortcut records
            total_collections: Registered collection count (reported as is)
            total_index_pages: Registered index page count (reported as is)

        Returns:
            ShortcutStatistics where duplicate_pages lists the target identities
            linked from more than one distinct index document
        """
        stats = ShortcutStatistics(
            total_collections=total_collections,
            total_index_pages=total_index_pages
        )

        df = records_frame(records)
        if df.empty:
            return stats

        stats.total_shortcuts = len(df)
        by_topic = df.groupby("topic_id").size()
        stats.shortcuts_by_topic = {str(k): int(v) for k, v in by_topic.items()}

        index_counts = df.groupby("target_identity")["index_node_identity"].nunique()
        stats.duplicate_pages = sorted(index_counts[index_counts > 1].index.tolist())

        logger.debug(
            f"Statistics: {stats.total_shortcuts} shortcuts, "
            f"{len(stats.shortcuts_by_topic)} topics, {len(stats.duplicate_pages)} duplicates"
        )
        return stats

    def export_records(
        self,
        records: List[ShortcutRecord],
        output_dir: str,
        label: str
    ) -> str:
        """
        Write records to CSV with a metadata JSON alongside.

        Args:
            records: Records to export
            output_dir: Directory for the output files
            label: Run label used in file names

        Returns:
            Path to the CSV file
        """
        os.makedirs(output_dir, exist_ok=True)
        output_path = os.path.join(output_dir, f"shortcuts_{label}.csv")

        df = records_frame(records)
        if not df.empty:
            df = df.sort_values(["index_node_identity", "topic_id", "target_identity"])
        df.to_csv(output_path, index=False)

        stats = self.summarize(records)
        metadata_path = os.path.join(output_dir, f"shortcuts_{label}_metadata.json")
        metadata = {
            "label": label,
            "statistics": stats.to_dict(),
            "index_pages": sorted(df["index_node_identity"].unique().tolist()) if not df.empty else [],
            "generated_at": datetime.now(timezone.utc).isoformat()
        }
        with open(metadata_path, 'w', encoding='utf-8') as f:
            json.dump(metadata, f, indent=2, ensure_ascii=False)

        logger.info(f"Exported {len(df)} shortcut records to {output_path}")
        return output_path
