from .snapshot_api import HttpSnapshotSource
