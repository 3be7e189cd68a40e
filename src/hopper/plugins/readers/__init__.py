"""Built-in item readers."""

from hopper.plugins.readers.delimited import DelimitedFileReader, DelimitedFileReaderConfig
from hopper.plugins.readers.iterable import ListItemReader

__all__ = ["DelimitedFileReader", "DelimitedFileReaderConfig", "ListItemReader"]
