"""
JSONL log of metric batches the agent gave up delivering.

Batches are appended to daily-rotated files for later inspection. They
are never read back or re-sent by the agent.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List


class DroppedBatchWriter:
    """Appends dropped metric batches to daily-rotated JSONL files."""

    def __init__(self, output_dir):
        self.output_dir = Path(output_dir)

    def _get_path(self) -> Path:
        """Get today's JSONL file path."""
        date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.output_dir / f"dropped-{date_str}.jsonl"

    def write(self, values: List[Dict[str, Any]], reason: str) -> Path:
        """Append one batch as a single JSON record and return the file written."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self._get_path()
        record = {
            'dropped_at': datetime.now(timezone.utc).isoformat(),
            'reason': reason,
            'values': values,
        }
        with open(path, "a") as f:
            f.write(json.dumps(record, default=str) + "\n")
        return path
