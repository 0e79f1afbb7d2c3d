# Copyright 2020-present Kensho Technologies, LLC.
"""Run structured queries end to end: compile, execute through a supplied executor, post-process.

The executor is the only part of the pipeline that performs I/O. It is called exactly once per
query, and any exception it raises propagates unchanged: there are no retries or timeouts here.
"""
from dataclasses import dataclass
import logging
from typing import Any, Callable, Iterable, Optional, Sequence, Tuple

from .compiler import NativeQuery, compile_query
from .post_processing import NullOrdering, process_results
from .request import QueryRequest
from .schema.snapshot import SchemaSnapshot


logger = logging.getLogger(__name__)

# Runs a native query against the store, returning one row of bindings per result.
QueryExecutor = Callable[[NativeQuery], Iterable[Sequence[Any]]]


@dataclass(frozen=True)
class QueryResult:
    columns: Tuple[str, ...]
    rows: Tuple[Tuple[Any, ...], ...]


class QueryObserver(object):
    """Hooks the host may implement to follow queries as they run. All hooks default to no-ops."""

    def on_request(self, request: QueryRequest) -> None:
        """Called before the request is compiled."""

    def on_native_query(self, request: QueryRequest, native_query: NativeQuery) -> None:
        """Called after compilation, before the native query is executed."""

    def on_results(self, native_query: NativeQuery, result: QueryResult) -> None:
        """Called with the final, post-processed result of the query."""


def run_query(
    execute: QueryExecutor,
    snapshot: SchemaSnapshot,
    request: QueryRequest,
    observer: Optional[QueryObserver] = None,
    null_ordering: NullOrdering = NullOrdering.NULLS_FIRST,
) -> QueryResult:
    """Compile the request, execute it and post-process its results.

    Args:
        execute: executor running native queries against the store.
        snapshot: the schema snapshot to use for the whole request.
        request: the structured query request to run.
        observer: optional observer notified at each stage of the query.
        null_ordering: where null values are placed when sorting.

    Returns:
        QueryResult with the names of the output columns, and the output rows

    Raises:
        QueryCompilationError: if the request is rejected by the compiler.
        PostProcessingError: if the rows returned by the executor do not match the query.
        Any exception raised by the executor, unchanged.
    """
    if observer is not None:
        observer.on_request(request)

    native_query = compile_query(request, snapshot.catalog, snapshot.custom_relationships)
    if observer is not None:
        observer.on_native_query(request, native_query)

    raw_rows = execute(native_query)
    rows = process_results(raw_rows, native_query, snapshot.catalog, null_ordering=null_ordering)
    logger.debug("Query on table %s returned %d rows.", request.source_table, len(rows))

    result = QueryResult(columns=native_query.column_names, rows=tuple(rows))
    if observer is not None:
        observer.on_results(native_query, result)
    return result
