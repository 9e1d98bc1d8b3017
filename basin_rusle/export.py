"""
Export Module – all-or-nothing output products.

Products are written into a hidden staging directory inside the output
directory and moved into place only once every product has been written.
"""

import json
import logging
import os
import shutil
import tempfile

import numpy as np
import pandas as pd

from basin_rusle.errors import ExportError

logger = logging.getLogger(__name__)


class OutputStage:
    """
    Context manager collecting one run's products.

        with OutputStage("output") as stage:
            write_csv(table, stage.path("class_area.csv"))
        stage.outputs   # {"class_area.csv": "output/class_area.csv"}
    """

    def __init__(self, output_dir: str):
        self.output_dir = output_dir
        self.outputs = {}
        self._staged = []
        self._staging = None

    def __enter__(self) -> "OutputStage":
        try:
            os.makedirs(self.output_dir, exist_ok=True)
            self._staging = tempfile.mkdtemp(prefix=".staging-", dir=self.output_dir)
        except OSError as e:
            raise ExportError(f"Output directory {self.output_dir} is not writable: {e}") from e
        return self

    def __exit__(self, exc_type, exc_val, tb):
        if exc_type is not None:
            self.discard()
            if issubclass(exc_type, OSError) and not issubclass(exc_type, ExportError):
                raise ExportError(f"Writing outputs failed: {exc_val}") from exc_val
            return False
        self.commit()
        return False

    def path(self, filename: str) -> str:
        """Staging path for a product; it is published under the same name."""
        self._staged.append(filename)
        return os.path.join(self._staging, filename)

    def commit(self) -> dict:
        """
        Move every staged product into place. Destinations are checked first;
        if a move still fails, products already moved are taken back out and
        the files they replaced are restored before ExportError is raised.
        """
        published = []  # (final path, backup of the replaced file or None)
        try:
            for filename in self._staged:
                final = os.path.join(self.output_dir, filename)
                if os.path.isdir(final):
                    raise IsADirectoryError(f"{final} is a directory")

            backups = os.path.join(self._staging, ".previous")
            os.makedirs(backups)
            for filename in self._staged:
                final = os.path.join(self.output_dir, filename)
                backup = None
                if os.path.lexists(final):
                    backup = os.path.join(backups, filename)
                    os.replace(final, backup)
                published.append((final, backup))
                os.replace(os.path.join(self._staging, filename), final)
        except OSError as e:
            _rollback(published)
            raise ExportError(f"Publishing outputs to {self.output_dir} failed: {e}") from e
        finally:
            self.discard()

        self.outputs = {name: os.path.join(self.output_dir, name) for name in self._staged}
        logger.info(f"[EXPORT] {len(self.outputs)} products written → {self.output_dir}")
        return self.outputs

    def discard(self) -> None:
        if self._staging and os.path.isdir(self._staging):
            shutil.rmtree(self._staging, ignore_errors=True)


def _rollback(published) -> None:
    for final, backup in reversed(published):
        if os.path.lexists(final):
            os.remove(final)
        if backup is not None:
            os.replace(backup, final)


def write_csv(table: pd.DataFrame, path: str) -> str:
    table.to_csv(path, index=False, float_format="%.4f")
    logger.info(f"[EXPORT] CSV saved → {path}")
    return path


def _json_default(obj):
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    return str(obj)


def write_json(payload: dict, path: str) -> str:
    with open(path, "w") as f:
        json.dump(payload, f, indent=2, default=_json_default)
    logger.info(f"[EXPORT] Report saved → {path}")
    return path
