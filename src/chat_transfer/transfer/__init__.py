"""
Chat-record transfer engine.

Provides:
- Export: build a Snapshot of composers, payloads and bubbles from a pair of stores
- Remap: clone a Snapshot under fresh, collision-free ids
- Merge: insert a Snapshot into target stores under the backup/verify protocol
- Snapshot file load/save in the export file format
"""

from .export import build_snapshot, dump_snapshot, load_snapshot, parse_snapshot, save_snapshot, select_records
from .merge import merge, payload_pairs, remove_records
from .remap import remap, replace_literals

__all__ = [
    "build_snapshot",
    "select_records",
    "dump_snapshot",
    "save_snapshot",
    "parse_snapshot",
    "load_snapshot",
    "remap",
    "replace_literals",
    "merge",
    "payload_pairs",
    "remove_records",
]
