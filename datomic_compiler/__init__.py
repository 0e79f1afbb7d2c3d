# Copyright 2020-present Kensho Technologies, LLC.
"""Commonly-used functions and data types from this package."""
from .compiler import (  # noqa
    CopyVariable,
    DatetimeValue,
    FieldValue,
    NativeQuery,
    OrderBySpec,
    compile_query,
)
from .datetime_units import DatetimeUnit  # noqa
from .exceptions import (  # noqa
    CompilationInvariantError,
    DatomicCompilerError,
    ExecutionError,
    InvalidQueryArgumentError,
    InvalidRelationshipError,
    PostProcessingError,
    QueryCompilationError,
    SchemaLoadError,
    UnsupportedQueryError,
)
from .post_processing import NullOrdering, process_results  # noqa
from .query_running import QueryObserver, QueryResult, run_query  # noqa
from .request import QueryRequest, parse_query_request  # noqa
from .schema.catalog import AttributeCatalog, load_catalog, load_catalog_from_path  # noqa
from .schema.inference import (  # noqa
    derive_tables,
    describe_database,
    describe_table,
    table_columns,
)
from .schema.relationships import (  # noqa
    load_custom_relationships,
    load_custom_relationships_from_path,
)
from .schema.snapshot import SchemaSnapshot, SchemaSnapshotHolder  # noqa


__package_name__ = "datomic-compiler"
__version__ = "1.0.0"
