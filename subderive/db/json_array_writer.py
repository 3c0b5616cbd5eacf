import io
import json
import logging
import os
from subderive.derive.derivative_account import DEFAULT_SS58_FORMAT


class ListSink:
    """
    Collects match records in memory, in the order they were emitted, and optionally passes each one on to
    another sink.
    """

    def __init__(self, forward_to=None):
        self.records = []
        self._forward_to = forward_to

    def emit(self, record):
        self.records.append(record)
        if self._forward_to is not None:
            self._forward_to.emit(record)

    def __len__(self):
        return len(self.records)


class JsonArrayWriter:
    """
    Streams match records to disk as a single JSON array, so that a long scan that gets interrupted still
    leaves every record found so far on disk.
    """

    def __init__(self, path, ss58_format=DEFAULT_SS58_FORMAT, log_description="derivative matches"):
        """
        :param path: str: the path of the JSON file. Folders are created as needed.
        :param ss58_format: int: address format used to render account ids
        :param log_description: str: a description of the file for logging purposes
        """
        self.logger = logging.getLogger(__name__)
        self.path = path
        self.ss58_format = ss58_format
        self._log_description = log_description
        self._write_count = 0
        self._closed = False

        folder = os.path.dirname(path)
        if folder and not os.path.exists(folder):
            os.makedirs(folder)
        self._file = io.open(path, "w", encoding="UTF-8")
        self._file.write("[")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def emit(self, record):
        self.write_item(record.to_dict(self.ss58_format))

    def write_item(self, data: dict):
        separator = "" if self._write_count == 0 else ","
        self._file.write(separator + "\n" + json.dumps(data))
        self.flush()

        self._write_count += 1
        if self._write_count % 1000 == 0:
            self.logger.info(f"{self._log_description} - wrote {self._write_count} entries")

    def flush(self):
        self._file.flush()

    def close(self):
        if self._closed:
            return
        self._file.write("\n]")
        self._file.close()
        self._closed = True
        self.logger.info(f"{self._log_description} - {self._write_count} entries saved to {self.path}")

    @property
    def write_count(self):
        return self._write_count


def write_summary(path, summary: dict):
    """
    Write the scan summary as pretty printed JSON.

    :param path: the path of the JSON file
    :type path: str
    :param summary: the summary produced by the scan
    :type summary: dict
    """
    folder = os.path.dirname(path)
    if folder and not os.path.exists(folder):
        os.makedirs(folder)
    with io.open(path, "w", encoding="UTF-8") as file:
        file.write(json.dumps(summary, indent=2))
