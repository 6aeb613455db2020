"""
Load pipeline: header -> schema -> tuned session -> fresh relation -> COPY.
"""
from pathlib import Path
from typing import IO, Optional, Union

from psycopg2.extensions import connection as Connection

from .config import LoadConfig
from .copier import load
from .errors import SchemaError
from .logger import get_logger
from .metrics import LoadReport
from .relation import bulk_load_session, prepare_relation, relation_identifier, tuning_for_profile
from .schema import derive_schema, normalize_column_name
from .source import open_source


def default_relation_name(path: Union[str, Path]) -> str:
    """Table name for a CSV file: its stem, normalized like a column name."""
    return normalize_column_name(Path(path).stem)


def process(
    destination: Connection,
    source: Union[str, Path, IO],
    relation_name: str,
    config: Optional[LoadConfig] = None,
) -> LoadReport:
    """
    Load a CSV file or stream into `relation_name`, replacing any existing table.

    The connection should be dedicated to this load: it is tuned for
    throughput while the load runs and restored afterwards.

    Raises:
        SourceOpenError, SourceReadError: the input can't be opened or has no header
        SchemaError: invalid relation name, colliding header or rejected DDL
        CopyError: streaming or commit failed; nothing was committed
    """
    config = config or LoadConfig()
    logger = get_logger()

    try:
        relation_identifier(relation_name)
    except ValueError as e:
        raise SchemaError(str(e), operation="prepare", cause=e) from e

    with open_source(source, encoding=config.encoding, delimiter=config.delimiter) as records:
        header = records.read_header()
        schema = derive_schema(header, on_duplicate=config.on_duplicate_columns)
        logger.info("Columns", columns=", ".join(schema.column_names))

        settings = tuning_for_profile(config.tuning_profile)
        with bulk_load_session(destination, settings, restore=config.restore_settings):
            prepare_relation(destination, relation_name, schema)
            report = load(
                destination,
                relation_name,
                schema,
                records,
                progress_interval=config.progress_interval,
                chunk_size=config.copy_chunk_size,
            )

    return report
