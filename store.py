import os
import json
import logging
import tempfile

from models import Snapshot

logger = logging.getLogger('MessagingStore')


class JSONStore:
    """File-backed store holding the whole snapshot as one JSON document.

    Every load reads the full file and every save rewrites it. There is no
    locking or versioning here; two load/mutate/save cycles that interleave
    will lose one of the writes.
    """

    def __init__(self, path):
        self.path = path

    def initialize(self):
        """Create the data directory and a default snapshot if missing"""
        data_dir = os.path.dirname(self.path)
        if data_dir:
            os.makedirs(data_dir, exist_ok=True)
        if not os.path.exists(self.path):
            self._write(Snapshot.default())
            logger.info(f"Created default snapshot at {self.path}")

    def load(self):
        """Return the current snapshot, or the default one if it cannot be read.

        Only unreadable or unparseable files fall back; a corrupt file is
        left on disk as-is and the next successful save overwrites it.
        Records with missing fields load with empty values.
        """
        try:
            self.initialize()
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            # ValueError covers json.JSONDecodeError and UnicodeDecodeError
            logger.error(f"Error reading database: {e}")
            return Snapshot.default()
        return Snapshot.from_dict(data)

    def save(self, snapshot):
        """Replace the persisted snapshot. Returns False on failure."""
        try:
            self.initialize()
            self._write(snapshot)
            return True
        except Exception as e:
            logger.error(f"Error writing to database: {e}")
            return False

    def _write(self, snapshot):
        # Write to a sibling temp file then swap it in, so readers never see
        # a half-written document
        data_dir = os.path.dirname(self.path) or '.'
        fd, tmp_path = tempfile.mkstemp(prefix='.database-', suffix='.json', dir=data_dir)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(snapshot.to_dict(), f, indent=2)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
