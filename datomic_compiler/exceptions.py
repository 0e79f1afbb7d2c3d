# Copyright 2020-present Kensho Technologies, LLC.
class DatomicCompilerError(Exception):
    """Generic error when translating structured queries to and from the entity store."""


class SchemaLoadError(DatomicCompilerError):
    """Exception raised when the provided schema snapshot could not be read or parsed.

    This is fatal to schema inference, and should be surfaced to the host as a failure to
    describe the database.
    """


class InvalidRelationshipError(DatomicCompilerError):
    """Exception raised when the custom relationship configuration is invalid.

    For example:
    - a relationship may have an empty path, or no destination table;
    - a hop of the path may refer to an attribute that does not exist in the catalog;
    - a hop of the path may refer to an attribute that is not a reference attribute.
    """


class QueryCompilationError(DatomicCompilerError):
    """Base class for structured query requests that were rejected by the compiler.

    A rejected request is never partially compiled.
    """


class UnsupportedQueryError(QueryCompilationError):
    """Exception raised when the request uses a feature with no defined translation.

    For example:
    - the request contains aggregations;
    - the request refers to a table or field that does not exist;
    - the request needs a null-safe binding for an attribute whose value type has no sentinel.
    """


class InvalidQueryArgumentError(QueryCompilationError):
    """Exception raised when a filter argument cannot be interpreted as the filtered field's type.

    For example:
    - a string argument was supplied for a filter on a long attribute;
    - an ident argument was supplied for a reference attribute, but no such ident exists.
    """


class CompilationInvariantError(DatomicCompilerError):
    """Exception raised when an internal invariant of the compiler is violated.

    This always indicates a bug in the compiler rather than bad input, for example two different
    (entity, attribute) pairs being assigned the same logic variable name.
    """


class PostProcessingError(DatomicCompilerError):
    """Exception raised when raw result rows do not match the compiled query's column metadata.

    The whole query is aborted: no partial result is ever returned.
    """


class ExecutionError(DatomicCompilerError):
    """Exception for executors to raise when the store fails to run a native query.

    The compiler propagates it unchanged, without retrying, classifying or masking it.
    """
