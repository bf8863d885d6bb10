"""Dataset persistence: row codec plus batched writer and reader."""

from .codec import FernetRowCodec, PlainRowCodec, RowCodec, build_row_codec, serialize_row
from .writer import DatasetCreate, DatasetReader, DatasetWriter, purge_datasets

__all__ = [
    "DatasetCreate",
    "DatasetReader",
    "DatasetWriter",
    "FernetRowCodec",
    "PlainRowCodec",
    "RowCodec",
    "build_row_codec",
    "purge_datasets",
    "serialize_row",
]
